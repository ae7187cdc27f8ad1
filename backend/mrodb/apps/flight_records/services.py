from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ... import analytics
from ...errors import NotFound, ValidationError, require_fields
from ...scoping import ListParams, build_filter, get_scoped, paginate, scoped_query
from ...security import Principal
from ...utils.dates import as_utc, at_utc_noon, parse_date, utcnow
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..storage import service as attachments
from ..storage.backends import StorageBackend
from ..storage.service import IncomingFile
from . import models, schemas

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = int(os.getenv("FLIGHT_RECORD_MAX_UPLOAD_BYTES", str(50 * attachments.MB)) or "0")

RESOURCE = "Flight record"

_OPTIONAL_TEXT = (
    "flight_number",
    "tail",
    "service",
    "block_time",
    "out_time",
    "log_page_no",
    "discrepancy_note",
    "rectification_note",
    "system_affected",
    "defect_status",
    "technician",
    "comment",
)


def _clean(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


def _validated(payload: schemas.FlightRecordInput) -> dict:
    require_fields(
        {
            "date": payload.date,
            "airline": payload.airline,
            "fleet": payload.fleet,
            "station": payload.station,
        }
    )
    day = parse_date(payload.date)
    if day is None:
        raise ValidationError("date must be a date (YYYY-MM-DD)", field="date")
    values = {
        "date": at_utc_noon(day),
        "airline": payload.airline.strip(),
        "fleet": payload.fleet.strip(),
        "station": payload.station.strip().upper(),
        "has_defect": bool(payload.has_defect),
    }
    for name in _OPTIONAL_TEXT:
        values[name] = _clean(getattr(payload, name))
    return values


def _title(record: models.FlightRecord) -> str:
    parts = [record.airline, record.flight_number or record.tail, record.station]
    return " ".join(p for p in parts if p)


def create_record(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    payload: schemas.FlightRecordInput,
    files: Sequence[IncomingFile] = (),
    request_info: Optional[RequestInfo] = None,
) -> models.FlightRecord:
    values = _validated(payload)
    attachments.enforce_size_limit(files, MAX_FILE_BYTES, field="files")

    record = models.FlightRecord(
        company_id=principal.company_id,
        created_by=principal.user_id,
        **values,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    attachments.store_attachments(
        db,
        storage,
        record,
        model=models.FlightRecordAttachment,
        parent_field="flight_record_id",
        folder=attachments.FLIGHT_RECORDS_FOLDER,
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        files=files,
    )
    db.refresh(record)

    log_activity(
        db,
        principal,
        action=ActivityAction.ADDED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record.id,
        resource_title=_title(record),
        metadata={
            "airline": record.airline,
            "fleet": record.fleet,
            "tail": record.tail,
            "station": record.station,
            "service": record.service,
            "has_defect": record.has_defect,
            "attachments": len(files),
        },
        request_info=request_info,
    )
    return record


def update_record(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    record_id: str,
    payload: schemas.FlightRecordInput,
    *,
    deleted_attachment_ids: Iterable[str] = (),
    files: Sequence[IncomingFile] = (),
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.FlightRecord, List[dict]]:
    """
    Apply an edit, drop the selected attachments and add new ones.

    Field changes, removed rows and new rows land in one commit. Blobs of
    removed attachments are deleted afterwards, best-effort; their results
    are returned.
    """
    values = _validated(payload)
    attachments.enforce_size_limit(files, MAX_FILE_BYTES, field="files")

    record = get_scoped(db, principal, models.FlightRecord, record_id, resource=RESOURCE)

    wanted = {str(i) for i in deleted_attachment_ids if i}
    removed = [
        a for a in record.attachments
        if a.id in wanted and a.company_id == principal.company_id
    ]

    stored = attachments.upload_files(
        storage,
        folder=attachments.FLIGHT_RECORDS_FOLDER,
        company_id=principal.company_id,
        parent_id=record.id,
        files=files,
    )

    for field, value in values.items():
        setattr(record, field, value)
    for attachment in removed:
        record.attachments.remove(attachment)
    db.flush()
    record.attachments.extend(
        attachments.attachment_rows(
            models.FlightRecordAttachment,
            "flight_record_id",
            company_id=principal.company_id,
            parent_id=record.id,
            uploaded_by=principal.user_id,
            stored=stored,
        )
    )

    try:
        db.commit()
    except Exception:
        db.rollback()
        attachments.delete_blobs(storage, [key for _, key in stored])
        raise
    db.refresh(record)

    file_results = attachments.delete_blobs(storage, [a.file_key for a in removed])

    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record.id,
        resource_title=_title(record),
        metadata={
            "removed_attachments": len(removed),
            "added_attachments": len(stored),
        },
        request_info=request_info,
    )
    return record, file_results


def delete_record(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    record_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    record = get_scoped(db, principal, models.FlightRecord, record_id, resource=RESOURCE)
    file_results = attachments.delete_blobs(storage, [a.file_key for a in record.attachments])

    metadata = {
        "airline": record.airline,
        "fleet": record.fleet,
        "tail": record.tail,
        "station": record.station,
        "service": record.service,
        "attachments": len(record.attachments),
    }
    title = _title(record)
    for attachment in list(record.attachments):
        db.delete(attachment)
    db.delete(record)
    db.commit()

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record_id,
        resource_title=title,
        metadata=metadata,
        request_info=request_info,
    )
    return file_results


def bulk_delete(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    ids: Sequence[str],
    request_info: Optional[RequestInfo] = None,
) -> Tuple[int, List[dict]]:
    ids = [i for i in (ids or []) if i]
    if not ids:
        raise ValidationError("ids must be a non-empty list", field="ids")

    FR = models.FlightRecord
    records = scoped_query(db, principal, FR).filter(FR.id.in_(ids)).all()
    if not records:
        raise NotFound("Flight records")

    file_results = attachments.delete_blobs(
        storage, [a.file_key for record in records for a in record.attachments]
    )
    deleted_ids = [record.id for record in records]
    try:
        for record in records:
            for attachment in list(record.attachments):
                db.delete(attachment)
            db.delete(record)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_activity(
        db,
        principal,
        action=ActivityAction.BULK_DELETED_FLIGHT_RECORDS,
        resource_type="flight_record",
        resource_id=None,
        resource_title=f"{len(deleted_ids)} flight records",
        metadata={"ids": deleted_ids, "requested": len(ids)},
        request_info=request_info,
    )
    return len(deleted_ids), file_results


def list_records(
    db: Session,
    principal: Principal,
    *,
    search: Optional[str] = None,
    stations: Optional[Sequence[str]] = None,
    airlines: Optional[Sequence[str]] = None,
    has_defect: Optional[bool] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    FR = models.FlightRecord
    params = ListParams(
        search=search,
        search_fields=(FR.airline, FR.flight_number, FR.tail, FR.station, FR.discrepancy_note),
        enum_filters={FR.station: stations, FR.airline: airlines},
        date_field=FR.date,
        start=start_date,
        end=end_date,
    )
    query = scoped_query(db, principal, FR, params).filter(FR.is_temporary.is_(False))
    if has_defect is not None:
        query = query.filter(FR.has_defect.is_(has_defect))
    return paginate(query, FR.date, FR.id, page, limit)


def get_record(db: Session, principal: Principal, record_id: str) -> models.FlightRecord:
    return get_scoped(db, principal, models.FlightRecord, record_id, resource=RESOURCE)


def get_attachment(db: Session, principal: Principal, attachment_id: str) -> models.FlightRecordAttachment:
    return get_scoped(db, principal, models.FlightRecordAttachment, attachment_id, resource="Attachment")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def dashboard_metrics(db: Session, principal: Principal, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    FR = models.FlightRecord

    completed = FR.is_temporary.is_(False)

    def count(*criteria) -> int:
        return analytics.count_rows(db, principal, FR, completed, *criteria)

    def in_window(window: analytics.Window, *criteria) -> int:
        return count(*window.clauses(FR.date), *criteria)

    this_month = analytics.month_window(now)
    previous_month = analytics.month_window(now, 1)
    defect = FR.has_defect.is_(True)

    total = count()
    month_total = in_window(this_month)
    previous_total = in_window(previous_month)
    defects_total = count(defect)
    month_defects = in_window(this_month, defect)
    previous_defects = in_window(previous_month, defect)

    change = analytics.percent_change(month_total, previous_total)

    recent = (
        db.query(FR)
        .filter(build_filter(principal, FR), completed)
        .order_by(FR.date.desc(), FR.created_at.desc(), FR.id.desc())
        .limit(5)
        .all()
    )

    return {
        "total_flights": total,
        "flights_this_month": month_total,
        "flights_this_week": in_window(analytics.week_window(now)),
        "flights_today": in_window(analytics.day_window(now)),
        "flights_year_to_date": in_window(analytics.year_to_date_window(now)),
        "flights_last_30_days": in_window(analytics.last_days_window(30, now)),
        "flights_previous_month": previous_total,
        "flights_two_months_ago": in_window(analytics.month_window(now, 2)),
        "flights_three_months_ago": in_window(analytics.month_window(now, 3)),
        "flights_with_defects": defects_total,
        "defects_this_month": month_defects,
        "defects_previous_month": previous_defects,
        "defect_rate": analytics.rate(defects_total, total),
        "monthly_defect_rate": analytics.rate(month_defects, month_total),
        "previous_month_defect_rate": analytics.rate(previous_defects, previous_total),
        "month_over_month_change": change,
        "trend": analytics.classify_trend(change),
        "month_progress": analytics.month_progress(now),
        "current_month": analytics.month_name(now),
        "previous_month": analytics.month_name(now, 1),
        "two_months_ago": analytics.month_name(now, 2),
        "three_months_ago": analytics.month_name(now, 3),
        "unique_stations": analytics.distinct_count(db, principal, FR, FR.station, completed),
        "unique_airlines": analytics.distinct_count(db, principal, FR, FR.airline, completed),
        "top_stations": analytics.top_values(db, principal, FR, FR.station, 3, completed),
        "top_airlines": analytics.top_values(db, principal, FR, FR.airline, 3, completed),
        "recent_flights": recent,
    }


# ---------------------------------------------------------------------------
# Pending flights
#
# A pending ("temporal") flight is announced with only its day, airline,
# station and flight number. It stays out of the main list and the
# dashboard until someone completes it with fleet and service.
# ---------------------------------------------------------------------------

MAX_COMPLETION_BYTES = int(os.getenv("FLIGHT_COMPLETION_MAX_UPLOAD_BYTES", str(250 * attachments.MB)) or "0")

PENDING_RESOURCE = "Temporal flight record"

_DEFECT_FIELDS = ("log_page_no", "discrepancy_note", "rectification_note", "system_affected", "defect_status")


def _pending_title(prefix: str, record: models.FlightRecord) -> str:
    return f"{prefix}: {record.airline} {record.flight_number} - {record.station}"


def _days_since(value: datetime, now: datetime) -> int:
    return max((now - as_utc(value)).days, 0)


def _get_pending(db: Session, principal: Principal, record_id: str) -> models.FlightRecord:
    FR = models.FlightRecord
    record = scoped_query(db, principal, FR).filter(FR.id == record_id, FR.is_temporary.is_(True)).first()
    if record is None:
        raise NotFound(PENDING_RESOURCE)
    return record


def create_temporary(
    db: Session,
    principal: Principal,
    payload: schemas.TemporaryFlightInput,
    request_info: Optional[RequestInfo] = None,
) -> models.FlightRecord:
    require_fields(
        {
            "date": payload.date,
            "airline": payload.airline,
            "station": payload.station,
            "flight_number": payload.flight_number,
        }
    )
    day = parse_date(payload.date)
    if day is None:
        raise ValidationError("date must be a date (YYYY-MM-DD)", field="date")
    values = {
        "date": at_utc_noon(day),
        "airline": payload.airline.strip(),
        "station": payload.station.strip().upper(),
        "flight_number": payload.flight_number.strip(),
    }

    FR = models.FlightRecord
    duplicate = (
        scoped_query(db, principal, FR)
        .filter(FR.is_temporary.is_(True), *[getattr(FR, name) == value for name, value in values.items()])
        .first()
    )
    if duplicate is not None:
        raise ValidationError("A temporal flight record with these details already exists")

    record = FR(
        company_id=principal.company_id,
        created_by=principal.user_id,
        fleet="",
        service="",
        technician=principal.full_name or None,
        is_temporary=True,
        **values,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    log_activity(
        db,
        principal,
        action=ActivityAction.ADDED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record.id,
        resource_title=_pending_title("Temporal Flight", record),
        metadata={
            "airline": record.airline,
            "flight_number": record.flight_number,
            "station": record.station,
            "date": day.isoformat(),
            "is_temporary": True,
        },
        request_info=request_info,
    )
    return record


def list_temporary(db: Session, principal: Principal, day: Optional[date] = None) -> List[models.FlightRecord]:
    FR = models.FlightRecord
    query = scoped_query(db, principal, FR).filter(FR.is_temporary.is_(True))
    if day is not None:
        query = query.filter(FR.date == at_utc_noon(day))
    return query.order_by(FR.date.desc(), FR.created_at.desc(), FR.id.desc()).all()


def delete_temporary(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    record_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    record = _get_pending(db, principal, record_id)
    file_results = attachments.delete_blobs(storage, [a.file_key for a in record.attachments])
    title = _pending_title("Temporal Flight", record)
    metadata = {
        "airline": record.airline,
        "flight_number": record.flight_number,
        "station": record.station,
        "is_temporary": True,
    }
    for attachment in list(record.attachments):
        db.delete(attachment)
    db.delete(record)
    db.commit()

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record_id,
        resource_title=title,
        metadata=metadata,
        request_info=request_info,
    )
    return file_results


def complete_flight(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    record_id: str,
    payload: schemas.FlightCompletionInput,
    files: Sequence[IncomingFile] = (),
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.FlightRecord, List[dict]]:
    """
    Turn a pending flight into a regular flight record.

    Defect, time and comment fields are kept only when their switch is on.
    New files replace every existing attachment; the replaced blobs are
    deleted after the commit and their results returned.
    """
    record = _get_pending(db, principal, record_id)
    require_fields({"fleet": payload.fleet, "service": payload.service})
    attachments.enforce_size_limit(files, MAX_COMPLETION_BYTES, aggregate=True, field="files")

    values = {
        "fleet": payload.fleet.strip(),
        "service": payload.service.strip(),
        "tail": _clean(payload.tail),
        "block_time": _clean(payload.block_time) if payload.has_time else None,
        "out_time": _clean(payload.out_time) if payload.has_time else None,
        "has_defect": bool(payload.has_defect),
        "comment": _clean(payload.comment) if payload.has_comment else None,
        "technician": _clean(payload.technician) or record.technician,
        "is_temporary": False,
    }
    for name in _DEFECT_FIELDS:
        values[name] = _clean(getattr(payload, name)) if payload.has_defect else None

    stored = attachments.upload_files(
        storage,
        folder=attachments.FLIGHT_RECORDS_FOLDER,
        company_id=principal.company_id,
        parent_id=record.id,
        files=files,
    )
    replaced = list(record.attachments) if stored else []

    for field, value in values.items():
        setattr(record, field, value)
    for attachment in replaced:
        record.attachments.remove(attachment)
    db.flush()
    record.attachments.extend(
        attachments.attachment_rows(
            models.FlightRecordAttachment,
            "flight_record_id",
            company_id=principal.company_id,
            parent_id=record.id,
            uploaded_by=principal.user_id,
            stored=stored,
        )
    )

    try:
        db.commit()
    except Exception:
        db.rollback()
        attachments.delete_blobs(storage, [key for _, key in stored])
        raise
    db.refresh(record)

    file_results = attachments.delete_blobs(storage, [a.file_key for a in replaced])

    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_FLIGHT_RECORD,
        resource_type="flight_record",
        resource_id=record.id,
        resource_title=_pending_title("Completed Flight", record),
        metadata={
            "airline": record.airline,
            "flight_number": record.flight_number,
            "station": record.station,
            "fleet": record.fleet,
            "service": record.service,
            "has_defect": record.has_defect,
            "attachments": len(stored),
        },
        request_info=request_info,
    )
    return record, file_results


def pending_metrics(db: Session, principal: Principal, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    today = at_utc_noon(now.date())
    FR = models.FlightRecord
    pending = FR.is_temporary.is_(True)

    def count(*criteria) -> int:
        return analytics.count_rows(db, principal, FR, pending, *criteria)

    ages = [
        _days_since(created_at, now)
        for (created_at,) in db.query(FR.created_at).filter(build_filter(principal, FR), pending).all()
    ]
    recent = (
        db.query(FR)
        .filter(build_filter(principal, FR), pending)
        .order_by(FR.created_at.desc(), FR.id.desc())
        .limit(5)
        .all()
    )

    return {
        "total_pending": len(ages),
        "todays_pending": count(FR.date == today),
        "overdue_pending": count(FR.date < today),
        "upcoming_pending": count(FR.date > today),
        "this_week_pending": count(FR.date >= today, FR.date <= today + timedelta(days=7)),
        "average_age": round(sum(ages) / len(ages)) if ages else 0,
        "oldest_pending": max(ages, default=0),
        "unique_stations": analytics.distinct_count(db, principal, FR, FR.station, pending),
        "unique_airlines": analytics.distinct_count(db, principal, FR, FR.airline, pending),
        "top_stations": analytics.top_values(db, principal, FR, FR.station, 3, pending),
        "top_airlines": analytics.top_values(db, principal, FR, FR.airline, 3, pending),
        "recent_pending_flights": [(record, _days_since(record.created_at, now)) for record in recent],
        "current_date": today.date().isoformat(),
    }


def monthly_count(db: Session, principal: Principal, now: Optional[datetime] = None) -> dict:
    window = analytics.month_window(now or utcnow())
    FR = models.FlightRecord
    count = analytics.count_rows(db, principal, FR, FR.is_temporary.is_(False), *window.clauses(FR.date))
    return {"count": count, "month": window.start.strftime("%B %Y")}


def stations_count(db: Session, principal: Principal) -> dict:
    FR = models.FlightRecord
    rows = (
        db.query(FR.station)
        .filter(build_filter(principal, FR), FR.is_temporary.is_(False), FR.station.isnot(None), FR.station != "")
        .distinct()
        .order_by(FR.station.asc())
        .all()
    )
    stations = [station for (station,) in rows]
    return {"count": len(stations), "stations": stations}
