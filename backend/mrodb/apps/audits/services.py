"""
Audit, finding and corrective-action persistence.

Findings and corrective actions carry their own `company_id`, copied from
the parent at creation, so every lookup runs through the same tenant
filter as the audits themselves.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ...errors import NotFound, ValidationError, require_fields
from ...scoping import ListParams, get_scoped, paginate, scoped_query
from ...security import Principal
from ...utils.dates import as_utc, parse_datetime, utcnow
from ...utils.identifiers import next_sequence_number
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..storage import service as attachments
from ..storage.backends import StorageBackend
from ..storage.service import IncomingFile
from . import models, schemas

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = int(os.getenv("AUDIT_MAX_UPLOAD_BYTES", str(50 * attachments.MB)) or "0")

AUDIT_DATE_FIELDS = ("planned_start_date", "planned_end_date", "actual_start_date", "actual_end_date")
FINDING_DATE_FIELDS = ("target_close_date",)
ACTION_DATE_FIELDS = ("assigned_date", "target_date", "completed_date")

# Non-nullable columns an update may not clear.
AUDIT_REQUIRED = ("title", "audit_type", "status", "priority", "planned_start_date", "planned_end_date")
FINDING_REQUIRED = ("title", "severity", "status")
ACTION_REQUIRED = ("title", "action_type", "priority", "status", "assigned_date", "target_date")

# Attachment targets as they appear in `/audits/{kind}/{id}/attachments`.
ATTACHMENT_TARGETS = {
    "audits": (models.Audit, "audit_id", "Audit"),
    "findings": (models.AuditFinding, "finding_id", "Finding"),
    "corrective-actions": (models.CorrectiveAction, "corrective_action_id", "Corrective action"),
}


def _clean_values(data: dict, date_fields: Sequence[str]) -> dict:
    values = {}
    for name, value in data.items():
        if name in date_fields:
            parsed = parse_datetime(value)
            if value not in (None, "") and parsed is None:
                raise ValidationError(f"{name} must be a date", field=name)
            values[name] = parsed
        elif isinstance(value, str):
            values[name] = value.strip() or None
        else:
            values[name] = value
    return values


def _apply(row, values: dict) -> List[str]:
    """Set `values` on `row`; return the names of the fields that changed."""
    changed = []
    for name, value in values.items():
        current = getattr(row, name)
        if isinstance(current, datetime):
            current = as_utc(current)
        if current != value:
            setattr(row, name, value)
            changed.append(name)
    return changed


def _check_window(start: Optional[datetime], end: Optional[datetime], field: str) -> None:
    if start is not None and end is not None and as_utc(end) < as_utc(start):
        raise ValidationError(f"{field} cannot be before the start date", field=field)


def _delete_with_blobs(db: Session, storage: StorageBackend, row, keys: Iterable[str]) -> List[dict]:
    file_results = attachments.delete_blobs(storage, list(keys))
    try:
        db.delete(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return file_results


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


def next_audit_number(db: Session, company_id: str, year: int) -> str:
    return next_sequence_number(
        db,
        models.Audit.audit_number,
        models.Audit.company_id == company_id,
        prefix=f"AUD-{year}-",
        width=4,
    )


def create_audit(
    db: Session,
    principal: Principal,
    payload: schemas.AuditInput,
    request_info: Optional[RequestInfo] = None,
    now: Optional[datetime] = None,
) -> models.Audit:
    require_fields(
        {
            "title": payload.title,
            "audit_type": payload.audit_type,
            "planned_start_date": payload.planned_start_date,
            "planned_end_date": payload.planned_end_date,
        }
    )
    values = _clean_values(payload.model_dump(exclude_none=True), AUDIT_DATE_FIELDS)
    _check_window(values["planned_start_date"], values["planned_end_date"], "planned_end_date")
    _check_window(values.get("actual_start_date"), values.get("actual_end_date"), "actual_end_date")

    year = (now or utcnow()).year
    audit = models.Audit(
        company_id=principal.company_id,
        audit_number=next_audit_number(db, principal.company_id, year),
        created_by=principal.user_id,
        **values,
    )
    db.add(audit)
    db.commit()
    db.refresh(audit)

    log_activity(
        db,
        principal,
        action=ActivityAction.CREATED_AUDIT,
        resource_type="audit",
        resource_id=audit.id,
        resource_title=f"Audit: {audit.audit_number} - {audit.title}",
        metadata={"audit_number": audit.audit_number, "audit_type": audit.audit_type.value},
        request_info=request_info,
    )
    return audit


def list_audits(
    db: Session,
    principal: Principal,
    *,
    audit_types: Optional[Sequence[models.AuditType]] = None,
    statuses: Optional[Sequence[models.AuditStatus]] = None,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    A = models.Audit
    params = ListParams(
        search=search,
        search_fields=(A.title, A.audit_number, A.lead_auditor, A.department),
        enum_filters={A.audit_type: audit_types, A.status: statuses},
        date_field=A.planned_start_date,
        start=start_date,
        end=end_date,
    )
    return paginate(scoped_query(db, principal, A, params), A.created_at, A.id, page, limit, default_limit=10)


def get_audit(db: Session, principal: Principal, audit_id: str) -> models.Audit:
    return get_scoped(db, principal, models.Audit, audit_id, resource="Audit")


def update_audit(
    db: Session,
    principal: Principal,
    audit_id: str,
    payload: schemas.AuditInput,
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.Audit, List[str]]:
    audit = get_audit(db, principal, audit_id)
    data = payload.model_dump(exclude_unset=True)
    require_fields({name: data[name] for name in AUDIT_REQUIRED if name in data})
    values = _clean_values(data, AUDIT_DATE_FIELDS)
    _check_window(
        values.get("planned_start_date", audit.planned_start_date),
        values.get("planned_end_date", audit.planned_end_date),
        "planned_end_date",
    )
    _check_window(
        values.get("actual_start_date", audit.actual_start_date),
        values.get("actual_end_date", audit.actual_end_date),
        "actual_end_date",
    )

    changed = _apply(audit, values)
    if not changed:
        return audit, []
    db.commit()
    db.refresh(audit)

    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_AUDIT,
        resource_type="audit",
        resource_id=audit.id,
        resource_title=f"Audit: {audit.audit_number} - {audit.title}",
        metadata={"changed_fields": changed},
        request_info=request_info,
    )
    return audit, changed


def _audit_blob_keys(audit: models.Audit) -> List[str]:
    keys = [a.file_key for a in audit.attachments]
    for finding in audit.findings:
        keys.extend(_finding_blob_keys(finding))
    return keys


def delete_audit(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    audit_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    """Remove the audit's blobs (and those of its findings and actions), then every row."""
    audit = get_scoped(db, principal, models.Audit, audit_id, resource="Audit", fresh=True)
    title = f"Audit: {audit.audit_number} - {audit.title}"
    findings = len(audit.findings)

    file_results = _delete_with_blobs(db, storage, audit, _audit_blob_keys(audit))

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_AUDIT,
        resource_type="audit",
        resource_id=audit_id,
        resource_title=title,
        metadata={"findings": findings, "file_results": file_results},
        request_info=request_info,
    )
    return file_results


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


def next_finding_number(db: Session, audit_id: str) -> str:
    return next_sequence_number(
        db,
        models.AuditFinding.finding_number,
        models.AuditFinding.audit_id == audit_id,
        prefix="F-",
        width=3,
    )


def create_finding(
    db: Session,
    principal: Principal,
    payload: schemas.FindingInput,
    request_info: Optional[RequestInfo] = None,
) -> models.AuditFinding:
    require_fields({"audit_id": payload.audit_id, "title": payload.title})
    audit = get_audit(db, principal, payload.audit_id)
    values = _clean_values(payload.model_dump(exclude_none=True, exclude={"audit_id"}), FINDING_DATE_FIELDS)

    finding = models.AuditFinding(
        company_id=principal.company_id,
        audit_id=audit.id,
        finding_number=next_finding_number(db, audit.id),
        **values,
    )
    db.add(finding)
    db.commit()
    db.refresh(finding)

    log_activity(
        db,
        principal,
        action=ActivityAction.CREATED_FINDING,
        resource_type="audit_finding",
        resource_id=finding.id,
        resource_title=f"{audit.audit_number} {finding.finding_number}: {finding.title}",
        metadata={"audit_id": audit.id, "severity": finding.severity.value},
        request_info=request_info,
    )
    return finding


def list_findings(
    db: Session,
    principal: Principal,
    *,
    audit_id: Optional[str] = None,
    statuses: Optional[Sequence[models.FindingStatus]] = None,
    severities: Optional[Sequence[models.FindingSeverity]] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    F = models.AuditFinding
    params = ListParams(
        search=search,
        search_fields=(F.title, F.finding_number, F.description, F.department),
        enum_filters={F.status: statuses, F.severity: severities},
    )
    query = scoped_query(db, principal, F, params)
    if audit_id:
        query = query.filter(F.audit_id == audit_id)
    return paginate(query, F.created_at, F.id, page, limit, default_limit=10)


def get_finding(db: Session, principal: Principal, finding_id: str) -> models.AuditFinding:
    return get_scoped(db, principal, models.AuditFinding, finding_id, resource="Finding")


def update_finding(
    db: Session,
    principal: Principal,
    finding_id: str,
    payload: schemas.FindingInput,
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.AuditFinding, List[str]]:
    finding = get_finding(db, principal, finding_id)
    data = payload.model_dump(exclude_unset=True, exclude={"audit_id"})
    require_fields({name: data[name] for name in FINDING_REQUIRED if name in data})

    changed = _apply(finding, _clean_values(data, FINDING_DATE_FIELDS))
    if not changed:
        return finding, []
    db.commit()
    db.refresh(finding)

    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_FINDING,
        resource_type="audit_finding",
        resource_id=finding.id,
        resource_title=f"{finding.finding_number}: {finding.title}",
        metadata={"changed_fields": changed},
        request_info=request_info,
    )
    return finding, changed


def _finding_blob_keys(finding: models.AuditFinding) -> List[str]:
    keys = [a.file_key for a in finding.attachments]
    for action in finding.corrective_actions:
        keys.extend(a.file_key for a in action.attachments)
    return keys


def delete_finding(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    finding_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    finding = get_scoped(db, principal, models.AuditFinding, finding_id, resource="Finding", fresh=True)
    title = f"{finding.finding_number}: {finding.title}"

    file_results = _delete_with_blobs(db, storage, finding, _finding_blob_keys(finding))

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_FINDING,
        resource_type="audit_finding",
        resource_id=finding_id,
        resource_title=title,
        metadata={"file_results": file_results},
        request_info=request_info,
    )
    return file_results


# ---------------------------------------------------------------------------
# Corrective actions
# ---------------------------------------------------------------------------


def next_action_number(db: Session, finding_id: str) -> str:
    return next_sequence_number(
        db,
        models.CorrectiveAction.action_number,
        models.CorrectiveAction.finding_id == finding_id,
        prefix="CA-",
        width=3,
    )


def overdue_criteria(now: Optional[datetime] = None) -> list:
    CA = models.CorrectiveAction
    return [CA.status.notin_(models.DONE_ACTION_STATUSES), CA.target_date < (now or utcnow())]


def create_action(
    db: Session,
    principal: Principal,
    payload: schemas.CorrectiveActionInput,
    request_info: Optional[RequestInfo] = None,
) -> models.CorrectiveAction:
    require_fields(
        {
            "finding_id": payload.finding_id,
            "title": payload.title,
            "target_date": payload.target_date,
        }
    )
    finding = get_finding(db, principal, payload.finding_id)
    values = _clean_values(payload.model_dump(exclude_none=True, exclude={"finding_id"}), ACTION_DATE_FIELDS)
    values.setdefault("status", models.ActionStatus.ASSIGNED)
    values.setdefault("priority", models.Priority.MEDIUM)
    values.setdefault("action_type", models.ActionType.CORRECTIVE)
    values.setdefault("assigned_date", utcnow())

    action = models.CorrectiveAction(
        company_id=principal.company_id,
        finding_id=finding.id,
        action_number=next_action_number(db, finding.id),
        **values,
    )
    db.add(action)
    db.commit()
    db.refresh(action)

    log_activity(
        db,
        principal,
        action=ActivityAction.CREATED_CORRECTIVE_ACTION,
        resource_type="corrective_action",
        resource_id=action.id,
        resource_title=f"{finding.finding_number} {action.action_number}: {action.title}",
        metadata={"finding_id": finding.id, "assigned_to": action.assigned_to},
        request_info=request_info,
    )
    return action


def list_actions(
    db: Session,
    principal: Principal,
    *,
    finding_id: Optional[str] = None,
    statuses: Optional[Sequence[models.ActionStatus]] = None,
    priorities: Optional[Sequence[models.Priority]] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    overdue: bool = False,
    page: int = 1,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> dict:
    CA = models.CorrectiveAction
    params = ListParams(
        search=search,
        search_fields=(CA.title, CA.action_number, CA.description, CA.assigned_to),
        enum_filters={CA.status: statuses, CA.priority: priorities},
    )
    query = scoped_query(db, principal, CA, params)
    if finding_id:
        query = query.filter(CA.finding_id == finding_id)
    if assigned_to and assigned_to.strip():
        query = query.filter(CA.assigned_to.ilike(f"%{assigned_to.strip()}%"))
    if overdue:
        query = query.filter(*overdue_criteria(now))
    return paginate(query, CA.created_at, CA.id, page, limit, default_limit=10)


def get_action(db: Session, principal: Principal, action_id: str) -> models.CorrectiveAction:
    return get_scoped(db, principal, models.CorrectiveAction, action_id, resource="Corrective action")


def update_action(
    db: Session,
    principal: Principal,
    action_id: str,
    payload: schemas.CorrectiveActionInput,
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.CorrectiveAction, List[str]]:
    action = get_action(db, principal, action_id)
    data = payload.model_dump(exclude_unset=True, exclude={"finding_id"})
    require_fields({name: data[name] for name in ACTION_REQUIRED if name in data})
    values = _clean_values(data, ACTION_DATE_FIELDS)

    # Completing an action stamps the completion date unless one was given.
    if (
        values.get("status") in models.DONE_ACTION_STATUSES
        and action.completed_date is None
        and values.get("completed_date") is None
    ):
        values["completed_date"] = utcnow()

    changed = _apply(action, values)
    if not changed:
        return action, []
    db.commit()
    db.refresh(action)

    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_CORRECTIVE_ACTION,
        resource_type="corrective_action",
        resource_id=action.id,
        resource_title=f"{action.action_number}: {action.title}",
        metadata={"changed_fields": changed, "status": action.status.value},
        request_info=request_info,
    )
    return action, changed


def delete_action(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    action_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    action = get_scoped(db, principal, models.CorrectiveAction, action_id, resource="Corrective action", fresh=True)
    title = f"{action.action_number}: {action.title}"

    file_results = _delete_with_blobs(db, storage, action, [a.file_key for a in action.attachments])

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_CORRECTIVE_ACTION,
        resource_type="corrective_action",
        resource_id=action_id,
        resource_title=title,
        metadata={"file_results": file_results},
        request_info=request_info,
    )
    return file_results


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


def upload_attachments(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    kind: str,
    parent_id: str,
    files: Sequence[IncomingFile],
    request_info: Optional[RequestInfo] = None,
) -> List[models.AuditAttachment]:
    if kind not in ATTACHMENT_TARGETS:
        raise NotFound("Attachment target")
    if not files:
        raise ValidationError("At least one file is required", field="files")
    attachments.enforce_size_limit(files, MAX_FILE_BYTES, field="files")

    model, parent_field, resource = ATTACHMENT_TARGETS[kind]
    parent = get_scoped(db, principal, model, parent_id, resource=resource)

    rows = attachments.store_attachments(
        db,
        storage,
        parent,
        model=models.AuditAttachment,
        parent_field=parent_field,
        folder=attachments.AUDITS_FOLDER,
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        files=files,
        discard_on_failure=False,
    )
    db.refresh(parent)

    log_activity(
        db,
        principal,
        action=ActivityAction.UPLOADED_AUDIT_ATTACHMENT,
        resource_type=parent_field[: -len("_id")],
        resource_id=parent.id,
        resource_title=getattr(parent, "title", None),
        metadata={"files": [f.file_name for f in files]},
        request_info=request_info,
    )
    return rows


def get_attachment(db: Session, principal: Principal, attachment_id: str) -> models.AuditAttachment:
    return get_scoped(db, principal, models.AuditAttachment, attachment_id, resource="Attachment")
