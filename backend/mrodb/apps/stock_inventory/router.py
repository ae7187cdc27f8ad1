from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...schemas import envelope, page_envelope
from ...security import Principal, require_permission
from ..activity.services import RequestInfo
from ..flight_records.schemas import BulkDeleteResult
from ..reports.renderer import render
from ..storage import service as attachments
from ..storage.backends import StorageBackend, get_storage
from ..storage.schemas import FileDeleteResult
from . import schemas, services

router = APIRouter(prefix="/stock-inventory", tags=["stock-inventory"])

can_view = require_permission("can_view_stock_inventory")
can_add = require_permission("can_add_stock_item")
can_delete = require_permission("can_delete_stock_record")
can_report = require_permission("can_generate_stock_report")


def _form_payload(
    part_no: Optional[str] = Form(default=None),
    serial_no: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    quantity: Optional[int] = Form(default=None),
    type: Optional[str] = Form(default=None),
    custom_type: Optional[str] = Form(default=None),
    location: Optional[str] = Form(default=None),
    custom_location: Optional[str] = Form(default=None),
    station: Optional[str] = Form(default=None),
    custom_station: Optional[str] = Form(default=None),
    owner: Optional[str] = Form(default=None),
    custom_owner: Optional[str] = Form(default=None),
    has_expire_date: bool = Form(default=False),
    expire_date: Optional[str] = Form(default=None),
    has_inspection: bool = Form(default=False),
    inspection_result: Optional[str] = Form(default=None),
    incoming_date: Optional[str] = Form(default=None),
    technician: Optional[str] = Form(default=None),
    notes: Optional[str] = Form(default=None),
) -> schemas.StockItemInput:
    return schemas.StockItemInput(
        part_no=part_no,
        serial_no=serial_no,
        description=description,
        quantity=quantity,
        type=type,
        custom_type=custom_type,
        location=location,
        custom_location=custom_location,
        station=station,
        custom_station=custom_station,
        owner=owner,
        custom_owner=custom_owner,
        has_expire_date=has_expire_date,
        expire_date=expire_date,
        has_inspection=has_inspection,
        inspection_result=inspection_result,
        incoming_date=incoming_date,
        technician=technician,
        notes=notes,
    )


def _filters(
    part_no: Optional[str] = None,
    serial_no: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    type: Optional[str] = None,
    station: Optional[str] = None,
    owner: Optional[str] = None,
    has_expire_date: Optional[bool] = None,
    has_inspection: Optional[bool] = None,
    inspection_result: Optional[str] = None,
) -> services.StockFilters:
    return services.StockFilters(
        part_no=part_no,
        serial_no=serial_no,
        description=description,
        location=location,
        type=type,
        station=station,
        owner=owner,
        has_expire_date=has_expire_date,
        has_inspection=has_inspection,
        inspection_result=inspection_result,
    )


@router.post("", status_code=201)
def create_item(
    request: Request,
    payload: schemas.StockItemInput = Depends(_form_payload),
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_add),
):
    item = services.create_item(
        db,
        storage,
        principal,
        payload,
        attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.StockItemRead.model_validate(item), message="Stock item created")


@router.get("/search")
def search_items(
    filters: services.StockFilters = Depends(_filters),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    result = services.search_items(db, principal, filters, page=page, limit=limit)
    return page_envelope(result, schemas.StockItemRead)


@router.get("/expiry-status")
def expiry_status(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    return envelope(services.expiry_status(db, principal))


@router.get("/report")
def stock_report(
    format: str = "excel",
    filters: services.StockFilters = Depends(_filters),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_report),
):
    rendered = render(services.stock_report(db, principal, filters), format)
    return Response(
        content=rendered.content,
        media_type=rendered.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{rendered.filename}"'},
    )


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
        BulkDeleteResult(
            deleted_count=deleted_count,
            file_results=[FileDeleteResult(**r) for r in results],
        ),
        message=f"Deleted {deleted_count} stock item(s)",
    )


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_read_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_view),
):
    return attachments.attachment_download(storage, services.get_attachment(db, principal, attachment_id))


@router.get("/{item_id}")
def get_item(
    item_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    return envelope(schemas.StockItemRead.model_validate(services.get_item(db, principal, item_id)))


@router.post("/{item_id}/use-quantity")
def use_quantity(
    item_id: str,
    body: schemas.UseQuantityRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_add),
):
    item, usage = services.use_quantity(
        db, principal, item_id, body, request_info=RequestInfo.from_request(request)
    )
    return envelope(
        {
            "item": schemas.StockItemRead.model_validate(item),
            "usage": schemas.StockUsageRead.model_validate(usage),
        },
        message=f"Successfully used {usage.quantity_used} units. {item.quantity} units remaining.",
    )


@router.get("/{item_id}/usage-history")
def usage_history(
    item_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_view),
):
    rows = services.usage_history(db, principal, item_id)
    return envelope([schemas.StockUsageRead.model_validate(r) for r in rows])


@router.delete("/{item_id}")
def delete_item(
    item_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_delete),
):
    results = services.delete_item(db, storage, principal, item_id, request_info=RequestInfo.from_request(request))
    return envelope(
        {"id": item_id},
        message="Stock item deleted successfully",
        file_results=[FileDeleteResult(**r) for r in results],
    )
