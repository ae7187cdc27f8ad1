from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, desc
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlightRecord(Base):
    """Line maintenance record for one flight / turnaround."""

    __tablename__ = "flight_records"
    __table_args__ = (
        Index("ix_flight_records_company_date", "company_id", desc("date")),
        Index("ix_flight_records_company_station", "company_id", "station"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    # Flight day stored at 12:00 UTC.
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    airline = Column(String(128), nullable=False, index=True)
    fleet = Column(String(64), nullable=False)
    flight_number = Column(String(32), nullable=True)
    tail = Column(String(32), nullable=True, index=True)
    station = Column(String(16), nullable=False, index=True)
    service = Column(String(64), nullable=True)

    block_time = Column(String(16), nullable=True)
    out_time = Column(String(16), nullable=True)

    has_defect = Column(Boolean, nullable=False, default=False, index=True)
    log_page_no = Column(String(64), nullable=True)
    discrepancy_note = Column(Text, nullable=True)
    rectification_note = Column(Text, nullable=True)
    system_affected = Column(String(128), nullable=True)
    defect_status = Column(String(32), nullable=True)

    technician = Column(String(255), nullable=True)
    comment = Column(Text, nullable=True)
    # Pending flight awaiting fleet and service details.
    is_temporary = Column(Boolean, nullable=False, default=False, index=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    attachments = relationship(
        "FlightRecordAttachment",
        back_populates="flight_record",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class FlightRecordAttachment(Base):
    __tablename__ = "flight_record_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    flight_record_id = Column(
        String(36),
        ForeignKey("flight_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_name = Column(String(255), nullable=False)
    file_key = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    flight_record = relationship("FlightRecord", back_populates="attachments")
