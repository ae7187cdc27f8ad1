from __future__ import annotations

import logging
import os
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ...errors import ValidationError, require_fields
from ...scoping import ListParams, get_scoped, paginate, scoped_query
from ...security import Principal
from ...utils.dates import at_utc_noon, parse_date
from ...utils.identifiers import next_sequence_number
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..storage import service as attachments
from ..storage.backends import StorageBackend
from ..storage.service import IncomingFile
from . import models, schemas

logger = logging.getLogger(__name__)

# Aggregate limit across all files of one report.
MAX_UPLOAD_BYTES = int(os.getenv("SMS_REPORT_MAX_UPLOAD_BYTES", str(250 * attachments.MB)) or "0")

RESOURCE = "SMS report"


def next_report_number(db: Session, company_id: str) -> str:
    return next_sequence_number(
        db,
        models.SmsReport.report_number,
        models.SmsReport.company_id == company_id,
        prefix="sms",
        width=2,
    )


def create_report(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    payload: schemas.SmsReportInput,
    files: Sequence[IncomingFile] = (),
    request_info: Optional[RequestInfo] = None,
) -> models.SmsReport:
    require_fields(
        {
            "date": payload.date,
            "report_title": payload.report_title,
            "report_description": payload.report_description,
        }
    )
    event_day = parse_date(payload.date)
    if event_day is None:
        raise ValidationError("date must be a date (YYYY-MM-DD)", field="date")
    attachments.enforce_size_limit(files, MAX_UPLOAD_BYTES, aggregate=True, field="files")

    report = models.SmsReport(
        company_id=principal.company_id,
        report_number=next_report_number(db, principal.company_id),
        user_id=principal.user_id,
        reporter_name=(payload.reporter_name or "").strip() or None,
        reporter_email=(payload.reporter_email or "").strip() or None,
        date=at_utc_noon(event_day),
        time_of_event=(payload.time_of_event or "").strip() or None,
        report_title=payload.report_title.strip(),
        report_description=payload.report_description.strip(),
        has_attachments=bool(files),
    )
    db.add(report)
    db.commit()
    db.refresh(report)

    attachments.store_attachments(
        db,
        storage,
        report,
        model=models.SmsReportAttachment,
        parent_field="sms_report_id",
        folder=attachments.SMS_REPORTS_FOLDER,
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        files=files,
    )
    db.refresh(report)

    log_activity(
        db,
        principal,
        action=ActivityAction.SUBMITTED_SMS_REPORT,
        resource_type="sms_report",
        resource_id=report.id,
        resource_title=f"{report.report_number}: {report.report_title}",
        metadata={"report_number": report.report_number, "attachments": len(files)},
        request_info=request_info,
    )
    return report


def email_context(report: models.SmsReport) -> dict:
    return {
        "reporter_name": report.reporter_name or "reporter",
        "report_number": report.report_number,
        "report_title": report.report_title,
        "report_description": report.report_description,
        "event_date": report.date.date().isoformat(),
        "submitted_at": report.created_at.isoformat(timespec="minutes"),
    }


def list_reports(
    db: Session,
    principal: Principal,
    *,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Non-admins only ever see the reports they submitted."""
    R = models.SmsReport
    params = ListParams(
        search=search,
        search_fields=(R.report_number, R.report_title, R.reporter_name),
        date_field=R.date,
        start=start_date,
        end=end_date,
        owner_field=R.user_id,
    )
    return paginate(scoped_query(db, principal, R, params), R.created_at, R.id, page, limit)


def get_report(db: Session, principal: Principal, report_id: str) -> models.SmsReport:
    return get_scoped(
        db, principal, models.SmsReport, report_id, resource=RESOURCE, owner_field=models.SmsReport.user_id
    )


def delete_report(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    report_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    report = get_report(db, principal, report_id)
    file_results = attachments.delete_blobs(storage, [a.file_key for a in report.attachments])

    number, title = report.report_number, report.report_title
    for attachment in list(report.attachments):
        db.delete(attachment)
    db.delete(report)
    db.commit()

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_SMS_REPORT,
        resource_type="sms_report",
        resource_id=report_id,
        resource_title=f"{number}: {title}",
        metadata={"file_results": file_results},
        request_info=request_info,
    )
    return file_results


def get_attachment(db: Session, principal: Principal, attachment_id: str) -> models.SmsReportAttachment:
    attachment = get_scoped(db, principal, models.SmsReportAttachment, attachment_id, resource="Attachment")
    # The parent's self scope applies to its files too.
    get_report(db, principal, attachment.sms_report_id)
    return attachment
