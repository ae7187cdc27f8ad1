from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String, desc

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityAction(str, enum.Enum):
    ADDED_FLIGHT_RECORD = "ADDED_FLIGHT_RECORD"
    UPDATED_FLIGHT_RECORD = "UPDATED_FLIGHT_RECORD"
    DELETED_FLIGHT_RECORD = "DELETED_FLIGHT_RECORD"
    BULK_DELETED_FLIGHT_RECORDS = "BULK_DELETED_FLIGHT_RECORDS"

    ADDED_TECHNICAL_PUBLICATION = "ADDED_TECHNICAL_PUBLICATION"
    UPDATED_TECHNICAL_PUBLICATION = "UPDATED_TECHNICAL_PUBLICATION"
    DELETED_TECHNICAL_PUBLICATION = "DELETED_TECHNICAL_PUBLICATION"

    SUBMITTED_SMS_REPORT = "SUBMITTED_SMS_REPORT"
    DELETED_SMS_REPORT = "DELETED_SMS_REPORT"

    CREATED_AUDIT = "CREATED_AUDIT"
    UPDATED_AUDIT = "UPDATED_AUDIT"
    DELETED_AUDIT = "DELETED_AUDIT"
    CREATED_FINDING = "CREATED_FINDING"
    UPDATED_FINDING = "UPDATED_FINDING"
    DELETED_FINDING = "DELETED_FINDING"
    CREATED_CORRECTIVE_ACTION = "CREATED_CORRECTIVE_ACTION"
    UPDATED_CORRECTIVE_ACTION = "UPDATED_CORRECTIVE_ACTION"
    DELETED_CORRECTIVE_ACTION = "DELETED_CORRECTIVE_ACTION"
    UPLOADED_AUDIT_ATTACHMENT = "UPLOADED_AUDIT_ATTACHMENT"
    GENERATED_AUDIT_REPORT = "GENERATED_AUDIT_REPORT"

    ADDED_STOCK_ITEM = "ADDED_STOCK_ITEM"
    DELETED_STOCK_ITEM = "DELETED_STOCK_ITEM"
    BULK_DELETED_STOCK_ITEMS = "BULK_DELETED_STOCK_ITEMS"
    USED_STOCK_QUANTITY = "USED_STOCK_QUANTITY"

    UPDATED_USER_PERMISSIONS = "UPDATED_USER_PERMISSIONS"
    UPDATED_USER_PRIVILEGE = "UPDATED_USER_PRIVILEGE"
    UPDATED_USER = "UPDATED_USER"
    DEACTIVATED_USER = "DEACTIVATED_USER"
    LOGGED_IN = "LOGGED_IN"


class UserActivity(Base):
    """
    Append-only trail of what a principal did.

    Rows are written after the primary change commits and are never
    updated or deleted by application code.
    """

    __tablename__ = "user_activities"
    __table_args__ = (
        Index("ix_user_activities_company_time", "company_id", desc("created_at")),
        Index("ix_user_activities_user_time", "user_id", desc("created_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    action = Column(String(64), nullable=False, index=True)
    resource_type = Column(String(64), nullable=False, index=True)
    resource_id = Column(String(64), nullable=True, index=True)
    resource_title = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    ip_address = Column(String(64), nullable=False, default="unknown")
    user_agent = Column(String(512), nullable=False, default="unknown")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<UserActivity id={self.id} action={self.action} resource={self.resource_type}:{self.resource_id}>"
