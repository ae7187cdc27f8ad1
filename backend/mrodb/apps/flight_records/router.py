from __future__ import annotations

import json
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...errors import ValidationError
from ...schemas import envelope, page_envelope
from ...security import Principal, require_permission
from ..activity.services import RequestInfo
from ..storage import service as attachments
from ..storage.backends import StorageBackend, get_storage
from ..storage.schemas import FileDeleteResult
from . import schemas, services

router = APIRouter(prefix="/flight-records", tags=["flight-records"])

can_view = require_permission("can_view_flight_records")
can_add = require_permission("can_add_flight_records")
can_edit = require_permission("can_edit_flight_records")
can_delete = require_permission("can_delete_flight_records")
can_add_temporal = require_permission("can_add_temporal_flight_records")
can_delete_pending = require_permission("can_delete_pending_flights")


def _form_payload(
    date: Optional[str] = Form(default=None),
    airline: Optional[str] = Form(default=None),
    fleet: Optional[str] = Form(default=None),
    flight_number: Optional[str] = Form(default=None),
    tail: Optional[str] = Form(default=None),
    station: Optional[str] = Form(default=None),
    service: Optional[str] = Form(default=None),
    block_time: Optional[str] = Form(default=None),
    out_time: Optional[str] = Form(default=None),
    has_defect: bool = Form(default=False),
    log_page_no: Optional[str] = Form(default=None),
    discrepancy_note: Optional[str] = Form(default=None),
    rectification_note: Optional[str] = Form(default=None),
    system_affected: Optional[str] = Form(default=None),
    defect_status: Optional[str] = Form(default=None),
    technician: Optional[str] = Form(default=None),
    comment: Optional[str] = Form(default=None),
) -> schemas.FlightRecordInput:
    return schemas.FlightRecordInput(
        date=date,
        airline=airline,
        fleet=fleet,
        flight_number=flight_number,
        tail=tail,
        station=station,
        service=service,
        block_time=block_time,
        out_time=out_time,
        has_defect=has_defect,
        log_page_no=log_page_no,
        discrepancy_note=discrepancy_note,
        rectification_note=rectification_note,
        system_affected=system_affected,
        defect_status=defect_status,
        technician=technician,
        comment=comment,
    )


def parse_id_list(raw: Optional[str], field: str) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        raise ValidationError(f"{field} must be a JSON list of ids", field=field)
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a JSON list of ids", field=field)
    return [str(v) for v in value if v]


@router.get("")
def list_records(
    search: Optional[str] = None,
    station: Optional[List[str]] = Query(default=None),
    airline: Optional[List[str]] = Query(default=None),
    has_defect: Optional[bool] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    result = services.list_records(
        db,
        principal,
        search=search,
        stations=station,
        airlines=airline,
        has_defect=has_defect,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.FlightRecordRead)


@router.post("", status_code=201)
def create_record(
    request: Request,
    payload: schemas.FlightRecordInput = Depends(_form_payload),
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_add),
):
    record = services.create_record(
        db,
        storage,
        principal,
        payload,
        attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.FlightRecordRead.model_validate(record), message="Flight record created")


@router.get("/dashboard-metrics")
def dashboard_metrics(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    metrics = services.dashboard_metrics(db, principal)
    metrics["recent_flights"] = [schemas.FlightRecordRead.model_validate(r) for r in metrics["recent_flights"]]
    return envelope(metrics)


def _completion_payload(
    fleet: Optional[str] = Form(default=None),
    service: Optional[str] = Form(default=None),
    tail: Optional[str] = Form(default=None),
    has_time: bool = Form(default=False),
    block_time: Optional[str] = Form(default=None),
    out_time: Optional[str] = Form(default=None),
    has_defect: bool = Form(default=False),
    log_page_no: Optional[str] = Form(default=None),
    discrepancy_note: Optional[str] = Form(default=None),
    rectification_note: Optional[str] = Form(default=None),
    system_affected: Optional[str] = Form(default=None),
    defect_status: Optional[str] = Form(default=None),
    has_comment: bool = Form(default=False),
    comment: Optional[str] = Form(default=None),
    technician: Optional[str] = Form(default=None),
) -> schemas.FlightCompletionInput:
    return schemas.FlightCompletionInput(
        fleet=fleet,
        service=service,
        tail=tail,
        has_time=has_time,
        block_time=block_time,
        out_time=out_time,
        has_defect=has_defect,
        log_page_no=log_page_no,
        discrepancy_note=discrepancy_note,
        rectification_note=rectification_note,
        system_affected=system_affected,
        defect_status=defect_status,
        has_comment=has_comment,
        comment=comment,
        technician=technician,
    )


@router.post("/temporal", status_code=201)
def create_temporary(
    body: schemas.TemporaryFlightInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_add_temporal),
):
    record = services.create_temporary(db, principal, body, request_info=RequestInfo.from_request(request))
    return envelope(
        schemas.FlightRecordRead.model_validate(record),
        message="Temporal flight record created successfully",
    )


@router.get("/temporal")
def list_temporary(
    day: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    records = services.list_temporary(db, principal, day)
    return envelope([schemas.FlightRecordRead.model_validate(r) for r in records])


@router.delete("/temporal/{record_id}")
def delete_temporary(
    record_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_delete_pending),
):
    results = services.delete_temporary(db, storage, principal, record_id, request_info=RequestInfo.from_request(request))
    return envelope(
        {"id": record_id},
        message="Temporal flight record deleted successfully",
        file_results=[FileDeleteResult(**r) for r in results],
    )


@router.put("/complete/{record_id}")
def complete_flight(
    record_id: str,
    request: Request,
    payload: schemas.FlightCompletionInput = Depends(_completion_payload),
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_add),
):
    record, results = services.complete_flight(
        db,
        storage,
        principal,
        record_id,
        payload,
        attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    return envelope(
        schemas.FlightRecordRead.model_validate(record),
        message="Flight record completed successfully",
        file_results=[FileDeleteResult(**r) for r in results],
    )


@router.get("/pending-metrics")
def pending_metrics(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    metrics = services.pending_metrics(db, principal)
    metrics["recent_pending_flights"] = [
        schemas.PendingFlightRead(
            **schemas.FlightRecordRead.model_validate(record).model_dump(),
            days_since_created=days,
        )
        for record, days in metrics["recent_pending_flights"]
    ]
    return envelope(metrics)


@router.get("/monthly-count")
def monthly_count(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    return envelope(services.monthly_count(db, principal))


@router.get("/stations-count")
def stations_count(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    return envelope(services.stations_count(db, principal))


@router.post("/bulk-delete")
def bulk_delete(
    body: schemas.BulkDeleteRequest,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_delete),
):
    deleted_count, results = services.bulk_delete(
        db, storage, principal, body.ids, request_info=RequestInfo.from_request(request)
    )
    return envelope(
        schemas.BulkDeleteResult(
            deleted_count=deleted_count,
            file_results=[FileDeleteResult(**r) for r in results],
        ),
        message=f"Deleted {deleted_count} flight record(s)",
    )


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_read_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_view),
):
    return attachments.attachment_download(storage, services.get_attachment(db, principal, attachment_id))


@router.get("/{record_id}")
def get_record(
    record_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    return envelope(schemas.FlightRecordRead.model_validate(services.get_record(db, principal, record_id)))


@router.put("/{record_id}")
def update_record(
    record_id: str,
    request: Request,
    payload: schemas.FlightRecordInput = Depends(_form_payload),
    deleted_attachment_ids: Optional[str] = Form(default=None),
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_edit),
):
    record, results = services.update_record(
        db,
        storage,
        principal,
        record_id,
        payload,
        deleted_attachment_ids=parse_id_list(deleted_attachment_ids, "deleted_attachment_ids"),
        files=attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    return envelope(
        schemas.FlightRecordRead.model_validate(record),
        message="Flight record updated",
        file_results=[FileDeleteResult(**r) for r in results],
    )


@router.delete("/{record_id}")
def delete_record(
    record_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_delete),
):
    results = services.delete_record(db, storage, principal, record_id, request_info=RequestInfo.from_request(request))
    return envelope(
        {"id": record_id},
        message="Flight record deleted successfully",
        file_results=[FileDeleteResult(**r) for r in results],
    )
