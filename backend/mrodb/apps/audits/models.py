# backend/mrodb/apps/audits/models.py
#
# Audit management:
# - Audit: a planned or performed audit, numbered AUD-YYYY-NNNN per company.
# - AuditFinding: a finding raised during an audit, numbered F-NNN per audit.
# - CorrectiveAction: work that closes a finding, numbered CA-NNN per finding.
# - AuditAttachment: files hanging off any of the three.

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditType(str, enum.Enum):
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"
    SAFETY = "SAFETY"
    COMPLIANCE = "COMPLIANCE"
    QUALITY = "QUALITY"
    REGULATORY = "REGULATORY"
    CUSTOMER = "CUSTOMER"


class AuditStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DEFERRED = "DEFERRED"


class Priority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class FindingSeverity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    NON_CRITICAL = "NON_CRITICAL"
    OBSERVATION = "OBSERVATION"


class FindingStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"
    VERIFIED = "VERIFIED"
    DEFERRED = "DEFERRED"


class ActionStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    VERIFIED = "VERIFIED"
    OVERDUE = "OVERDUE"


class ActionType(str, enum.Enum):
    CORRECTIVE = "CORRECTIVE"
    PREVENTIVE = "PREVENTIVE"
    IMPROVEMENT = "IMPROVEMENT"


OPEN_FINDING_STATUSES = (FindingStatus.OPEN, FindingStatus.IN_PROGRESS)
RESOLVED_FINDING_STATUSES = (FindingStatus.VERIFIED, FindingStatus.CLOSED)
DONE_ACTION_STATUSES = (ActionStatus.COMPLETED, ActionStatus.VERIFIED)


class Audit(Base):
    __tablename__ = "audits"
    __table_args__ = (
        UniqueConstraint("company_id", "audit_number", name="uq_audits_company_number"),
        Index("ix_audits_company_status", "company_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    audit_number = Column(String(32), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    audit_type = Column(SAEnum(AuditType, name="audit_type", native_enum=False), nullable=False, index=True)
    status = Column(
        SAEnum(AuditStatus, name="audit_status", native_enum=False),
        nullable=False,
        default=AuditStatus.PLANNED,
    )
    priority = Column(
        SAEnum(Priority, name="audit_priority", native_enum=False),
        nullable=False,
        default=Priority.MEDIUM,
    )

    department = Column(String(128), nullable=True)
    location = Column(String(128), nullable=True)
    lead_auditor = Column(String(255), nullable=True)
    audit_team = Column(JSON, nullable=True)
    auditee = Column(String(255), nullable=True)
    scope = Column(Text, nullable=True)
    objectives = Column(Text, nullable=True)

    planned_start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    planned_end_date = Column(DateTime(timezone=True), nullable=False)
    actual_start_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)

    # Percentage 0-100, set once the audit has been performed.
    compliance_rate = Column(Float, nullable=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    findings = relationship(
        "AuditFinding",
        back_populates="audit",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="AuditFinding.finding_number",
    )
    attachments = relationship(
        "AuditAttachment",
        back_populates="audit",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class AuditFinding(Base):
    __tablename__ = "audit_findings"
    __table_args__ = (
        UniqueConstraint("audit_id", "finding_number", name="uq_audit_findings_audit_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    audit_id = Column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True)
    finding_number = Column(String(16), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(
        SAEnum(FindingSeverity, name="finding_severity", native_enum=False),
        nullable=False,
        default=FindingSeverity.MINOR,
    )
    status = Column(
        SAEnum(FindingStatus, name="finding_status", native_enum=False),
        nullable=False,
        default=FindingStatus.OPEN,
        index=True,
    )
    category = Column(String(128), nullable=True)
    department = Column(String(128), nullable=True)
    requirement = Column(Text, nullable=True)
    target_close_date = Column(DateTime(timezone=True), nullable=True)
    identified_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    audit = relationship("Audit", back_populates="findings")
    corrective_actions = relationship(
        "CorrectiveAction",
        back_populates="finding",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="CorrectiveAction.action_number",
    )
    attachments = relationship(
        "AuditAttachment",
        back_populates="finding",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class CorrectiveAction(Base):
    __tablename__ = "corrective_actions"
    __table_args__ = (
        UniqueConstraint("finding_id", "action_number", name="uq_corrective_actions_finding_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    finding_id = Column(String(36), ForeignKey("audit_findings.id", ondelete="CASCADE"), nullable=False, index=True)
    action_number = Column(String(16), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    action_type = Column(
        SAEnum(ActionType, name="corrective_action_type", native_enum=False),
        nullable=False,
        default=ActionType.CORRECTIVE,
    )
    priority = Column(
        SAEnum(Priority, name="corrective_action_priority", native_enum=False),
        nullable=False,
        default=Priority.MEDIUM,
    )
    status = Column(
        SAEnum(ActionStatus, name="corrective_action_status", native_enum=False),
        nullable=False,
        default=ActionStatus.ASSIGNED,
        index=True,
    )
    assigned_to = Column(String(255), nullable=True)
    assigned_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    target_date = Column(DateTime(timezone=True), nullable=False)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(String(255), nullable=True)
    verification_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    finding = relationship("AuditFinding", back_populates="corrective_actions")
    attachments = relationship(
        "AuditAttachment",
        back_populates="corrective_action",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class AuditAttachment(Base):
    """Exactly one of audit_id / finding_id / corrective_action_id is set."""

    __tablename__ = "audit_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    audit_id = Column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=True, index=True)
    finding_id = Column(String(36), ForeignKey("audit_findings.id", ondelete="CASCADE"), nullable=True, index=True)
    corrective_action_id = Column(
        String(36),
        ForeignKey("corrective_actions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    file_name = Column(String(255), nullable=False)
    file_key = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    audit = relationship("Audit", back_populates="attachments")
    finding = relationship("AuditFinding", back_populates="attachments")
    corrective_action = relationship("CorrectiveAction", back_populates="attachments")
