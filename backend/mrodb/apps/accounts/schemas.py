from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import Privilege


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    username: str
    email: str
    first_name: str
    last_name: str
    privilege: Privilege
    is_active: bool
    created_at: datetime


class UserPermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    can_view_flight_records: bool
    can_add_flight_records: bool
    can_export_flight_records: bool
    can_edit_flight_records: bool
    can_export_pdf_flight_records: bool
    can_delete_flight_records: bool
    can_add_temporal_flight_records: bool
    can_delete_pending_flights: bool
    can_view_stock_inventory: bool
    can_generate_stock_report: bool
    can_add_stock_item: bool
    can_generate_stock_pdf: bool
    can_delete_stock_record: bool
    can_view_incoming_inspections: bool
    can_add_incoming_inspections: bool
    can_delete_incoming_inspections: bool
    can_configure_temperature_ranges: bool
    can_add_temperature_record: bool
    can_delete_temperature_record: bool
    can_see_audit_management: bool
    updated_at: datetime


class UserPermissionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    permissions: Dict[str, bool]


class PrivilegeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    privilege: Privilege


class ManagedUserRead(UserRead):
    updated_at: datetime
    activity_count: int = 0


class ManagedUserDetail(ManagedUserRead):
    permissions: Optional[UserPermissionRead] = None


class PasswordReset(BaseModel):
    model_config = ConfigDict(extra="forbid")

    new_password: str


class EmailChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
