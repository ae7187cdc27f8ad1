from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...schemas import envelope, page_envelope
from ...security import Principal, get_current_principal
from ..activity.services import RequestInfo
from ..notifications.service import queue_email
from ..storage import service as attachments
from ..storage.backends import StorageBackend, get_storage
from ..storage.schemas import FileDeleteResult
from . import schemas, services

router = APIRouter(prefix="/sms-reports", tags=["sms-reports"])


def _form_payload(
    date: Optional[str] = Form(default=None),
    report_title: Optional[str] = Form(default=None),
    report_description: Optional[str] = Form(default=None),
    time_of_event: Optional[str] = Form(default=None),
    reporter_name: Optional[str] = Form(default=None),
    reporter_email: Optional[str] = Form(default=None),
) -> schemas.SmsReportInput:
    return schemas.SmsReportInput(
        date=date,
        report_title=report_title,
        report_description=report_description,
        time_of_event=time_of_event,
        reporter_name=reporter_name,
        reporter_email=reporter_email,
    )


@router.post("", status_code=201)
def submit_report(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: schemas.SmsReportInput = Depends(_form_payload),
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    report = services.create_report(
        db,
        storage,
        principal,
        payload,
        attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    email_queued = queue_email(
        background_tasks,
        template_key="sms_report_submitted",
        recipient=report.reporter_email,
        subject=f"SMS report {report.report_number} received",
        context=services.email_context(report),
        correlation_id=report.id,
    )
    return envelope(
        schemas.SmsReportRead.model_validate(report),
        message="SMS report submitted",
        email_queued=email_queued,
    )


@router.get("")
def list_reports(
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    result = services.list_reports(
        db, principal, search=search, start_date=start_date, end_date=end_date, page=page, limit=limit
    )
    return page_envelope(result, schemas.SmsReportRead)


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_read_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    return attachments.attachment_download(storage, services.get_attachment(db, principal, attachment_id))


@router.get("/{report_id}")
def get_report(
    report_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    return envelope(schemas.SmsReportRead.model_validate(services.get_report(db, principal, report_id)))


@router.delete("/{report_id}")
def delete_report(
    report_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    results = services.delete_report(db, storage, principal, report_id, request_info=RequestInfo.from_request(request))
    return envelope(None, message="SMS report deleted", file_results=[FileDeleteResult(**r) for r in results])
