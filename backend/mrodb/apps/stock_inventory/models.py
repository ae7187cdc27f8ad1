from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


INSPECTION_FAILED = "Failed"


class StockItem(Base):
    """
    One stock line (part number / serial number) held at a station.

    Each of type / location / station / owner has a free-text `custom_*`
    companion used when the value is not one of the predefined options.
    """

    __tablename__ = "stock_items"
    __table_args__ = (
        Index("ix_stock_items_company_part", "company_id", "part_no"),
        Index("ix_stock_items_company_created", "company_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    part_no = Column(String(128), nullable=False)
    serial_no = Column(String(128), nullable=True, index=True)
    description = Column(String(512), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    type = Column(String(64), nullable=True)
    custom_type = Column(String(128), nullable=True)
    location = Column(String(64), nullable=True)
    custom_location = Column(String(128), nullable=True)
    station = Column(String(16), nullable=True)
    custom_station = Column(String(64), nullable=True)
    owner = Column(String(64), nullable=True)
    custom_owner = Column(String(128), nullable=True)

    has_expire_date = Column(Boolean, nullable=False, default=False)
    expire_date = Column(DateTime(timezone=True), nullable=True)
    has_inspection = Column(Boolean, nullable=False, default=False)
    inspection_result = Column(String(32), nullable=True)  # Passed / Failed
    incoming_date = Column(DateTime(timezone=True), nullable=True)

    technician = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    attachments = relationship(
        "StockItemAttachment",
        back_populates="stock_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    usages = relationship(
        "StockUsage",
        back_populates="stock_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="StockUsage.used_at.desc()",
    )


class StockItemAttachment(Base):
    __tablename__ = "stock_item_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    stock_item_id = Column(String(36), ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(255), nullable=False)
    file_key = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    stock_item = relationship("StockItem", back_populates="attachments")


class StockUsage(Base):
    """Append-only record of one quantity withdrawal."""

    __tablename__ = "stock_usages"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    stock_item_id = Column(String(36), ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_used = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    used_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    used_by_name = Column(String(255), nullable=True)
    purpose = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    stock_item = relationship("StockItem", back_populates="usages")
