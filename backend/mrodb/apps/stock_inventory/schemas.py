from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..storage.schemas import AttachmentRead


class StockItemInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    part_no: Optional[str] = None
    serial_no: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = None
    type: Optional[str] = None
    custom_type: Optional[str] = None
    location: Optional[str] = None
    custom_location: Optional[str] = None
    station: Optional[str] = None
    custom_station: Optional[str] = None
    owner: Optional[str] = None
    custom_owner: Optional[str] = None
    has_expire_date: bool = False
    expire_date: Optional[str] = None
    has_inspection: bool = False
    inspection_result: Optional[str] = None
    incoming_date: Optional[str] = None
    technician: Optional[str] = None
    notes: Optional[str] = None


class StockItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    part_no: str
    serial_no: Optional[str] = None
    description: str
    quantity: int
    type: Optional[str] = None
    custom_type: Optional[str] = None
    location: Optional[str] = None
    custom_location: Optional[str] = None
    station: Optional[str] = None
    custom_station: Optional[str] = None
    owner: Optional[str] = None
    custom_owner: Optional[str] = None
    has_expire_date: bool
    expire_date: Optional[datetime] = None
    has_inspection: bool
    inspection_result: Optional[str] = None
    incoming_date: Optional[datetime] = None
    technician: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRead] = []


class UseQuantityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quantity_used: int
    purpose: Optional[str] = None
    notes: Optional[str] = None


class StockUsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    stock_item_id: str
    quantity_used: int
    remaining_quantity: int
    used_by: Optional[str] = None
    used_by_name: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    used_at: datetime


class ExpiryEntry(BaseModel):
    id: str
    part_no: str
    serial_no: Optional[str] = None
    description: str
    expire_date: datetime
    days_left: int


class ExpiryStatus(BaseModel):
    expired_count: int
    expiring_soon_count: int
    total_with_expiry: int
    expired: List[ExpiryEntry] = Field(default_factory=list)
    expiring_soon: List[ExpiryEntry] = Field(default_factory=list)


class BulkDeleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: List[str] = Field(default_factory=list)
