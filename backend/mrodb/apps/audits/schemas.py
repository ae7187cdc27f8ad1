from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..storage.schemas import AttachmentRead
from .models import (
    ActionStatus,
    ActionType,
    AuditStatus,
    AuditType,
    FindingSeverity,
    FindingStatus,
    Priority,
)


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


class AuditInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    audit_type: Optional[AuditType] = None
    status: Optional[AuditStatus] = None
    priority: Optional[Priority] = None
    department: Optional[str] = None
    location: Optional[str] = None
    lead_auditor: Optional[str] = None
    audit_team: Optional[List[str]] = None
    auditee: Optional[str] = None
    scope: Optional[str] = None
    objectives: Optional[str] = None
    planned_start_date: Optional[str] = None
    planned_end_date: Optional[str] = None
    actual_start_date: Optional[str] = None
    actual_end_date: Optional[str] = None
    compliance_rate: Optional[float] = Field(default=None, ge=0, le=100)


class CorrectiveActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    finding_id: str
    action_number: str
    title: str
    description: Optional[str] = None
    action_type: ActionType
    priority: Priority
    status: ActionStatus
    assigned_to: Optional[str] = None
    assigned_date: datetime
    target_date: datetime
    completed_date: Optional[datetime] = None
    verified_by: Optional[str] = None
    verification_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRead] = []


class FindingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    audit_id: str
    finding_number: str
    title: str
    description: Optional[str] = None
    severity: FindingSeverity
    status: FindingStatus
    category: Optional[str] = None
    department: Optional[str] = None
    requirement: Optional[str] = None
    target_close_date: Optional[datetime] = None
    identified_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRead] = []


class FindingDetail(FindingRead):
    corrective_actions: List[CorrectiveActionRead] = []


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    audit_number: str
    title: str
    description: Optional[str] = None
    audit_type: AuditType
    status: AuditStatus
    priority: Priority
    department: Optional[str] = None
    location: Optional[str] = None
    lead_auditor: Optional[str] = None
    audit_team: Optional[List[str]] = None
    auditee: Optional[str] = None
    scope: Optional[str] = None
    objectives: Optional[str] = None
    planned_start_date: datetime
    planned_end_date: datetime
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    compliance_rate: Optional[float] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuditDetail(AuditRead):
    findings: List[FindingDetail] = []
    attachments: List[AttachmentRead] = []


# ---------------------------------------------------------------------------
# Findings and corrective actions
# ---------------------------------------------------------------------------


class FindingInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audit_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[FindingSeverity] = None
    status: Optional[FindingStatus] = None
    category: Optional[str] = None
    department: Optional[str] = None
    requirement: Optional[str] = None
    target_close_date: Optional[str] = None
    identified_by: Optional[str] = None


class CorrectiveActionInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    finding_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    action_type: Optional[ActionType] = None
    priority: Optional[Priority] = None
    status: Optional[ActionStatus] = None
    assigned_to: Optional[str] = None
    assigned_date: Optional[str] = None
    target_date: Optional[str] = None
    completed_date: Optional[str] = None
    verified_by: Optional[str] = None
    verification_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class DateRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class ReportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template: str
    format: str = "excel"
    date_range: Optional[DateRange] = None
    audit_types: List[AuditType] = Field(default_factory=list)
    statuses: List[AuditStatus] = Field(default_factory=list)
