from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SmsReport(Base):
    """Safety Management System occurrence report."""

    __tablename__ = "sms_reports"
    __table_args__ = (
        UniqueConstraint("company_id", "report_number", name="uq_sms_reports_company_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    report_number = Column(String(32), nullable=False, index=True)  # sms01, sms02, ...

    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    reporter_name = Column(String(255), nullable=True)
    reporter_email = Column(String(255), nullable=True)

    # Event day stored at 12:00 UTC.
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    time_of_event = Column(String(16), nullable=True)
    report_title = Column(String(255), nullable=False)
    report_description = Column(Text, nullable=False)
    has_attachments = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    attachments = relationship(
        "SmsReportAttachment",
        back_populates="report",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class SmsReportAttachment(Base):
    __tablename__ = "sms_report_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    sms_report_id = Column(String(36), ForeignKey("sms_reports.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(255), nullable=False)
    file_key = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    report = relationship("SmsReport", back_populates="attachments")
