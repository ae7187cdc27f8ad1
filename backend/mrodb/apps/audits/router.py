from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...schemas import envelope, page_envelope
from ...security import Principal, require_permission
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..reports.renderer import render
from ..storage import service as attachments
from ..storage.backends import StorageBackend, get_storage
from ..storage.schemas import AttachmentRead, FileDeleteResult
from . import dashboard, models, reports, schemas, services

can_manage_audits = require_permission("can_see_audit_management")

router = APIRouter(prefix="/audits", tags=["audits"])


def _file_results(results: list) -> list:
    return [FileDeleteResult(**r) for r in results]


# ---------------------------------------------------------------------------
# Dashboard and reports
# ---------------------------------------------------------------------------


@router.get("/dashboard")
def audit_dashboard(
    timeframe: int = Query(default=30, ge=1, le=3650),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    data = dashboard.dashboard(db, principal, timeframe=timeframe)
    data["recent_audits"] = [schemas.AuditRead.model_validate(a) for a in data["recent_audits"]]
    data["upcoming_audits"] = [schemas.AuditRead.model_validate(a) for a in data["upcoming_audits"]]
    return envelope(data)


@router.post("/reports/generate")
def generate_report(
    body: schemas.ReportRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    rendered = render(reports.build_report(db, principal, body), body.format)
    log_activity(
        db,
        principal,
        action=ActivityAction.GENERATED_AUDIT_REPORT,
        resource_type="audit_report",
        resource_id=None,
        resource_title=rendered.filename,
        metadata={"template": body.template, "format": body.format},
        request_info=RequestInfo.from_request(request),
    )
    return Response(
        content=rendered.content,
        media_type=rendered.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{rendered.filename}"'},
    )


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


@router.get("/findings")
def list_findings(
    audit_id: Optional[str] = None,
    status: Optional[List[models.FindingStatus]] = Query(default=None),
    severity: Optional[List[models.FindingSeverity]] = Query(default=None),
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    result = services.list_findings(
        db,
        principal,
        audit_id=audit_id,
        statuses=status,
        severities=severity,
        search=search,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.FindingDetail)


@router.post("/findings", status_code=201)
def create_finding(
    payload: schemas.FindingInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    finding = services.create_finding(db, principal, payload, request_info=RequestInfo.from_request(request))
    return envelope(schemas.FindingDetail.model_validate(finding), message="Finding created")


@router.get("/findings/analytics")
def findings_analytics(
    audit_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    return envelope(dashboard.findings_analytics(db, principal, audit_id=audit_id))


@router.get("/findings/{finding_id}")
def get_finding(
    finding_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    return envelope(schemas.FindingDetail.model_validate(services.get_finding(db, principal, finding_id)))


@router.put("/findings/{finding_id}")
def update_finding(
    finding_id: str,
    payload: schemas.FindingInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    finding, changed = services.update_finding(
        db, principal, finding_id, payload, request_info=RequestInfo.from_request(request)
    )
    return envelope(
        schemas.FindingDetail.model_validate(finding),
        message="Finding updated" if changed else "No changes detected",
    )


@router.delete("/findings/{finding_id}")
def delete_finding(
    finding_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_manage_audits),
):
    results = services.delete_finding(
        db, storage, principal, finding_id, request_info=RequestInfo.from_request(request)
    )
    return envelope(None, message="Finding deleted", file_results=_file_results(results))


# ---------------------------------------------------------------------------
# Corrective actions
# ---------------------------------------------------------------------------


@router.get("/corrective-actions")
def list_actions(
    finding_id: Optional[str] = None,
    status: Optional[List[models.ActionStatus]] = Query(default=None),
    priority: Optional[List[models.Priority]] = Query(default=None),
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    overdue: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    result = services.list_actions(
        db,
        principal,
        finding_id=finding_id,
        statuses=status,
        priorities=priority,
        assigned_to=assigned_to,
        search=search,
        overdue=overdue,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.CorrectiveActionRead)


@router.post("/corrective-actions", status_code=201)
def create_action(
    payload: schemas.CorrectiveActionInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    action = services.create_action(db, principal, payload, request_info=RequestInfo.from_request(request))
    return envelope(schemas.CorrectiveActionRead.model_validate(action), message="Corrective action created")


@router.get("/corrective-actions/analytics")
def actions_analytics(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    return envelope(dashboard.actions_analytics(db, principal))


@router.get("/corrective-actions/{action_id}")
def get_action(
    action_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    return envelope(schemas.CorrectiveActionRead.model_validate(services.get_action(db, principal, action_id)))


@router.put("/corrective-actions/{action_id}")
def update_action(
    action_id: str,
    payload: schemas.CorrectiveActionInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    action, changed = services.update_action(
        db, principal, action_id, payload, request_info=RequestInfo.from_request(request)
    )
    return envelope(
        schemas.CorrectiveActionRead.model_validate(action),
        message="Corrective action updated" if changed else "No changes detected",
    )


@router.delete("/corrective-actions/{action_id}")
def delete_action(
    action_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_manage_audits),
):
    results = services.delete_action(
        db, storage, principal, action_id, request_info=RequestInfo.from_request(request)
    )
    return envelope(None, message="Corrective action deleted", file_results=_file_results(results))


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_read_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_manage_audits),
):
    return attachments.attachment_download(storage, services.get_attachment(db, principal, attachment_id))


@router.post("/{kind}/{parent_id}/attachments", status_code=201)
def upload_attachments(
    kind: str,
    parent_id: str,
    request: Request,
    files: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_manage_audits),
):
    rows = services.upload_attachments(
        db,
        storage,
        principal,
        kind,
        parent_id,
        attachments.incoming_files(files),
        request_info=RequestInfo.from_request(request),
    )
    return envelope([AttachmentRead.model_validate(r) for r in rows], message="Files uploaded")


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


@router.get("")
def list_audits(
    audit_type: Optional[List[models.AuditType]] = Query(default=None),
    status: Optional[List[models.AuditStatus]] = Query(default=None),
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    result = services.list_audits(
        db,
        principal,
        audit_types=audit_type,
        statuses=status,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.AuditRead)


@router.post("", status_code=201)
def create_audit(
    payload: schemas.AuditInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    audit = services.create_audit(db, principal, payload, request_info=RequestInfo.from_request(request))
    return envelope(schemas.AuditDetail.model_validate(audit), message="Audit created")


@router.get("/{audit_id}")
def get_audit(
    audit_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(can_manage_audits),
):
    return envelope(schemas.AuditDetail.model_validate(services.get_audit(db, principal, audit_id)))


@router.put("/{audit_id}")
def update_audit(
    audit_id: str,
    payload: schemas.AuditInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(can_manage_audits),
):
    audit, changed = services.update_audit(db, principal, audit_id, payload, request_info=RequestInfo.from_request(request))
    return envelope(
        schemas.AuditDetail.model_validate(audit),
        message="Audit updated" if changed else "No changes detected",
    )


@router.delete("/{audit_id}")
def delete_audit(
    audit_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(can_manage_audits),
):
    results = services.delete_audit(db, storage, principal, audit_id, request_info=RequestInfo.from_request(request))
    return envelope(None, message="Audit deleted", file_results=_file_results(results))
