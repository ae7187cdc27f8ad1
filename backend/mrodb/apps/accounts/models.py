# backend/mrodb/apps/accounts/models.py
#
# Tenancy and identity:
# - Company: the isolation boundary, every business row points at one.
# - User: belongs to exactly one company, carries a privilege level.
# - UserPermission: per-user capability flags, created with defaults on
#   first access.

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Privilege(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    TECHNICIAN = "technician"
    READER = "reader"


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=False)
    code = Column(String(32), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    users = relationship("User", back_populates="company", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Company id={self.id} code={self.code}>"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=False)

    privilege = Column(
        SAEnum(Privilege, name="user_privilege", native_enum=False),
        nullable=False,
        default=Privilege.READER,
        index=True,
    )

    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    company = relationship("Company", back_populates="users", lazy="joined")
    permission = relationship(
        "UserPermission",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.privilege == Privilege.ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username} company_id={self.company_id}>"


# Flag name -> value used when a permission row is first created.
PERMISSION_DEFAULTS = {
    "can_view_flight_records": True,
    "can_add_flight_records": True,
    "can_export_flight_records": False,
    "can_edit_flight_records": False,
    "can_export_pdf_flight_records": True,
    "can_delete_flight_records": False,
    "can_add_temporal_flight_records": True,
    "can_delete_pending_flights": False,
    "can_view_stock_inventory": True,
    "can_generate_stock_report": True,
    "can_add_stock_item": False,
    "can_generate_stock_pdf": True,
    "can_delete_stock_record": False,
    "can_view_incoming_inspections": True,
    "can_add_incoming_inspections": False,
    "can_delete_incoming_inspections": False,
    "can_configure_temperature_ranges": False,
    "can_add_temperature_record": False,
    "can_delete_temperature_record": False,
    "can_see_audit_management": False,
}

PERMISSION_FLAGS = tuple(PERMISSION_DEFAULTS)


class UserPermission(Base):
    __tablename__ = "user_permissions"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id = Column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    can_view_flight_records = Column(Boolean, nullable=False, default=True)
    can_add_flight_records = Column(Boolean, nullable=False, default=True)
    can_export_flight_records = Column(Boolean, nullable=False, default=False)
    can_edit_flight_records = Column(Boolean, nullable=False, default=False)
    can_export_pdf_flight_records = Column(Boolean, nullable=False, default=True)
    can_delete_flight_records = Column(Boolean, nullable=False, default=False)
    can_add_temporal_flight_records = Column(Boolean, nullable=False, default=True)
    can_delete_pending_flights = Column(Boolean, nullable=False, default=False)

    can_view_stock_inventory = Column(Boolean, nullable=False, default=True)
    can_generate_stock_report = Column(Boolean, nullable=False, default=True)
    can_add_stock_item = Column(Boolean, nullable=False, default=False)
    can_generate_stock_pdf = Column(Boolean, nullable=False, default=True)
    can_delete_stock_record = Column(Boolean, nullable=False, default=False)

    can_view_incoming_inspections = Column(Boolean, nullable=False, default=True)
    can_add_incoming_inspections = Column(Boolean, nullable=False, default=False)
    can_delete_incoming_inspections = Column(Boolean, nullable=False, default=False)

    can_configure_temperature_ranges = Column(Boolean, nullable=False, default=False)
    can_add_temperature_record = Column(Boolean, nullable=False, default=False)
    can_delete_temperature_record = Column(Boolean, nullable=False, default=False)

    can_see_audit_management = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="permission")

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_permissions_user"),
    )

    def as_flags(self) -> dict:
        return {flag: bool(getattr(self, flag)) for flag in PERMISSION_FLAGS}
