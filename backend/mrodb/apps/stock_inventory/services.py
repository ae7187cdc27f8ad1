from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...errors import NotFound, ValidationError, require_fields
from ...scoping import ListParams, build_filter, get_scoped, paginate, scoped_query
from ...security import Principal
from ...utils.dates import as_utc, at_utc_noon, iso_day, parse_date, utcnow
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..reports.renderer import ReportData, ReportSection
from ..storage import service as attachments
from ..storage.backends import StorageBackend
from ..storage.service import IncomingFile
from . import models, schemas

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = int(os.getenv("STOCK_ITEM_MAX_UPLOAD_BYTES", str(50 * attachments.MB)) or "0")

EXPIRING_SOON_DAYS = 30
INSPECTION_RESULTS = ("Passed", models.INSPECTION_FAILED)

RESOURCE = "Stock item"

_OPTIONAL_TEXT = (
    "serial_no",
    "type",
    "custom_type",
    "location",
    "custom_location",
    "station",
    "custom_station",
    "owner",
    "custom_owner",
    "technician",
    "notes",
)


def _clean(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


def _day(value: Optional[str], field: str) -> datetime:
    day = parse_date(value)
    if day is None:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", field=field)
    return at_utc_noon(day)


def _validated(payload: schemas.StockItemInput) -> dict:
    require_fields(
        {
            "part_no": payload.part_no,
            "description": payload.description,
            "quantity": payload.quantity,
            "incoming_date": payload.incoming_date,
        }
    )
    if payload.quantity < 0:
        raise ValidationError("quantity must not be negative", field="quantity")

    values = {
        "part_no": payload.part_no.strip(),
        "description": payload.description.strip(),
        "quantity": payload.quantity,
        "incoming_date": _day(payload.incoming_date, "incoming_date"),
        "has_expire_date": bool(payload.has_expire_date),
        "expire_date": None,
        "has_inspection": bool(payload.has_inspection),
        "inspection_result": None,
    }
    for name in _OPTIONAL_TEXT:
        values[name] = _clean(getattr(payload, name))
    if values["station"]:
        values["station"] = values["station"].upper()

    if values["has_expire_date"]:
        require_fields({"expire_date": payload.expire_date})
        values["expire_date"] = _day(payload.expire_date, "expire_date")

    if values["has_inspection"]:
        result = _clean(payload.inspection_result)
        require_fields({"inspection_result": result})
        matched = [r for r in INSPECTION_RESULTS if r.lower() == result.lower()]
        if not matched:
            raise ValidationError(
                f"inspection_result must be one of: {', '.join(INSPECTION_RESULTS)}",
                field="inspection_result",
            )
        values["inspection_result"] = matched[0]
    return values


def _title(item: models.StockItem) -> str:
    if item.serial_no:
        return f"{item.part_no} S/N {item.serial_no}"
    return item.part_no


def create_item(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    payload: schemas.StockItemInput,
    files: Sequence[IncomingFile] = (),
    request_info: Optional[RequestInfo] = None,
) -> models.StockItem:
    values = _validated(payload)
    attachments.enforce_size_limit(files, MAX_FILE_BYTES, field="files")

    item = models.StockItem(
        company_id=principal.company_id,
        created_by=principal.user_id,
        **values,
    )
    db.add(item)
    db.commit()
    db.refresh(item)

    attachments.store_attachments(
        db,
        storage,
        item,
        model=models.StockItemAttachment,
        parent_field="stock_item_id",
        folder=attachments.STOCK_INVENTORY_FOLDER,
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        files=files,
    )
    db.refresh(item)

    log_activity(
        db,
        principal,
        action=ActivityAction.ADDED_STOCK_ITEM,
        resource_type="stock_item",
        resource_id=item.id,
        resource_title=_title(item),
        metadata={
            "part_no": item.part_no,
            "serial_no": item.serial_no,
            "quantity": item.quantity,
            "station": item.station or item.custom_station,
            "attachments": len(files),
        },
        request_info=request_info,
    )
    return item


def get_item(db: Session, principal: Principal, item_id: str) -> models.StockItem:
    return get_scoped(db, principal, models.StockItem, item_id, resource=RESOURCE)


def get_attachment(db: Session, principal: Principal, attachment_id: str) -> models.StockItemAttachment:
    return get_scoped(db, principal, models.StockItemAttachment, attachment_id, resource="Attachment")


def _remove(db: Session, item: models.StockItem) -> None:
    for attachment in list(item.attachments):
        db.delete(attachment)
    for usage in list(item.usages):
        db.delete(usage)
    db.delete(item)


def delete_item(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    item_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    item = get_scoped(db, principal, models.StockItem, item_id, resource=RESOURCE, fresh=True)
    file_results = attachments.delete_blobs(storage, [a.file_key for a in item.attachments])

    title = _title(item)
    metadata = {"part_no": item.part_no, "serial_no": item.serial_no, "quantity": item.quantity}
    _remove(db, item)
    db.commit()

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_STOCK_ITEM,
        resource_type="stock_item",
        resource_id=item_id,
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

    SI = models.StockItem
    items = scoped_query(db, principal, SI).filter(SI.id.in_(ids)).populate_existing().all()
    if not items:
        raise NotFound("Stock items")

    file_results = attachments.delete_blobs(
        storage, [a.file_key for item in items for a in item.attachments]
    )
    deleted_ids = [item.id for item in items]
    try:
        for item in items:
            _remove(db, item)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_activity(
        db,
        principal,
        action=ActivityAction.BULK_DELETED_STOCK_ITEMS,
        resource_type="stock_item",
        resource_id=None,
        resource_title=f"{len(deleted_ids)} stock items",
        metadata={"ids": deleted_ids, "requested": len(ids)},
        request_info=request_info,
    )
    return len(deleted_ids), file_results


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@dataclass
class StockFilters:
    part_no: Optional[str] = None
    serial_no: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    type: Optional[str] = None
    station: Optional[str] = None
    owner: Optional[str] = None
    has_expire_date: Optional[bool] = None
    has_inspection: Optional[bool] = None
    inspection_result: Optional[str] = None


def _like(term: Optional[str]) -> Optional[str]:
    term = (term or "").strip()
    return f"%{term}%" if term else None


def filtered_query(db: Session, principal: Principal, filters: Optional[StockFilters] = None):
    SI = models.StockItem
    query = scoped_query(db, principal, SI)
    if filters is None:
        return query

    for column, term in (
        (SI.part_no, filters.part_no),
        (SI.serial_no, filters.serial_no),
        (SI.description, filters.description),
    ):
        like = _like(term)
        if like:
            query = query.filter(column.ilike(like))

    # Each of these also matches the free-text value entered under "Other".
    for column, custom, term in (
        (SI.location, SI.custom_location, filters.location),
        (SI.type, SI.custom_type, filters.type),
        (SI.station, SI.custom_station, filters.station),
        (SI.owner, SI.custom_owner, filters.owner),
    ):
        like = _like(term)
        if like:
            query = query.filter(or_(column.ilike(like), custom.ilike(like)))

    if filters.has_expire_date:
        query = query.filter(SI.has_expire_date.is_(True))
    if filters.has_inspection:
        query = query.filter(SI.has_inspection.is_(True))
    result = _clean(filters.inspection_result)
    if result:
        query = query.filter(SI.inspection_result.ilike(result))
    return query


def search_items(
    db: Session,
    principal: Principal,
    filters: Optional[StockFilters] = None,
    *,
    page: int = 1,
    limit: int = 20,
) -> dict:
    SI = models.StockItem
    return paginate(filtered_query(db, principal, filters), SI.created_at, SI.id, page, limit)


# ---------------------------------------------------------------------------
# Quantity usage
# ---------------------------------------------------------------------------


def use_quantity(
    db: Session,
    principal: Principal,
    item_id: str,
    body: schemas.UseQuantityRequest,
    request_info: Optional[RequestInfo] = None,
    now: Optional[datetime] = None,
) -> Tuple[models.StockItem, models.StockUsage]:
    """
    Withdraw `quantity_used` units and record who took them.

    The item is re-read under a row lock so two concurrent withdrawals
    cannot both pass the availability check.
    """
    SI = models.StockItem
    item = (
        db.query(SI)
        .filter(build_filter(principal, SI), SI.id == item_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if item is None:
        raise NotFound(RESOURCE)

    requested = body.quantity_used
    if requested is None or requested <= 0:
        db.rollback()
        raise ValidationError("quantity_used must be greater than zero", field="quantity_used")
    if requested > item.quantity:
        available = item.quantity
        db.rollback()
        raise ValidationError(
            f"Insufficient quantity. Available: {available}, Requested: {requested}",
            field="quantity_used",
        )

    item.quantity = item.quantity - requested
    usage = models.StockUsage(
        company_id=principal.company_id,
        stock_item_id=item.id,
        quantity_used=requested,
        remaining_quantity=item.quantity,
        used_by=principal.user_id,
        used_by_name=principal.full_name or principal.username or None,
        purpose=_clean(body.purpose),
        notes=_clean(body.notes),
        used_at=now or utcnow(),
    )
    db.add(usage)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(item)
    db.refresh(usage)

    log_activity(
        db,
        principal,
        action=ActivityAction.USED_STOCK_QUANTITY,
        resource_type="stock_item",
        resource_id=item.id,
        resource_title=_title(item),
        metadata={
            "quantity_used": requested,
            "remaining_quantity": item.quantity,
            "purpose": usage.purpose,
        },
        request_info=request_info,
    )
    return item, usage


def usage_history(db: Session, principal: Principal, item_id: str) -> List[models.StockUsage]:
    get_item(db, principal, item_id)
    SU = models.StockUsage
    return (
        db.query(SU)
        .filter(SU.company_id == principal.company_id, SU.stock_item_id == item_id)
        .order_by(SU.used_at.desc(), SU.id.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def days_left(expire_date: datetime, now: Optional[datetime] = None) -> int:
    """Whole days from `now` until `expire_date`, rounded up."""
    remaining = as_utc(expire_date) - as_utc(now or utcnow())
    whole, rest = divmod(remaining.total_seconds(), 86400)
    return int(whole) + (1 if rest > 0 else 0)


def expiry_status(db: Session, principal: Principal, now: Optional[datetime] = None) -> schemas.ExpiryStatus:
    now = now or utcnow()
    SI = models.StockItem
    items = (
        scoped_query(db, principal, SI)
        .filter(SI.has_expire_date.is_(True), SI.expire_date.isnot(None))
        .order_by(SI.expire_date.asc(), SI.id.asc())
        .all()
    )

    expired: List[schemas.ExpiryEntry] = []
    expiring_soon: List[schemas.ExpiryEntry] = []
    for item in items:
        # A failed inspection takes the part out of service regardless of expiry.
        if item.has_inspection and (item.inspection_result or "").lower() == models.INSPECTION_FAILED.lower():
            continue
        left = days_left(item.expire_date, now)
        entry = schemas.ExpiryEntry(
            id=item.id,
            part_no=item.part_no,
            serial_no=item.serial_no,
            description=item.description,
            expire_date=as_utc(item.expire_date),
            days_left=left,
        )
        if left <= 0:
            expired.append(entry)
        elif left <= EXPIRING_SOON_DAYS:
            expiring_soon.append(entry)

    return schemas.ExpiryStatus(
        expired_count=len(expired),
        expiring_soon_count=len(expiring_soon),
        total_with_expiry=len(items),
        expired=expired,
        expiring_soon=expiring_soon,
    )


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def _choice(value: Optional[str], custom: Optional[str]) -> Optional[str]:
    return custom or value


def stock_report(
    db: Session,
    principal: Principal,
    filters: Optional[StockFilters] = None,
    now: Optional[datetime] = None,
) -> ReportData:
    now = now or utcnow()
    SI = models.StockItem
    items = filtered_query(db, principal, filters).order_by(SI.part_no.asc(), SI.id.asc()).all()
    status = expiry_status(db, principal, now)
    expired_ids = {e.id for e in status.expired}
    soon_ids = {e.id for e in status.expiring_soon}

    rows = []
    for item in items:
        if item.id in expired_ids:
            expiry = "Expired"
        elif item.id in soon_ids:
            expiry = "Expiring soon"
        else:
            expiry = ""
        rows.append(
            {
                "Part No": item.part_no,
                "Serial No": item.serial_no,
                "Description": item.description,
                "Quantity": item.quantity,
                "Type": _choice(item.type, item.custom_type),
                "Location": _choice(item.location, item.custom_location),
                "Station": _choice(item.station, item.custom_station),
                "Owner": _choice(item.owner, item.custom_owner),
                "Incoming Date": iso_day(item.incoming_date),
                "Expire Date": iso_day(item.expire_date) if item.has_expire_date else None,
                "Inspection": item.inspection_result if item.has_inspection else None,
                "Expiry Status": expiry,
            }
        )

    return ReportData(
        template="stock_inventory",
        title="Stock Inventory Report",
        summary={
            "Items": len(items),
            "Total quantity": sum(item.quantity or 0 for item in items),
            "Expired": sum(1 for item in items if item.id in expired_ids),
            "Expiring soon": sum(1 for item in items if item.id in soon_ids),
        },
        sections=[ReportSection("Items", rows)],
        generated_at=now,
    )
