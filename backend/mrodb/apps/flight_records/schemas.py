from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..storage.schemas import AttachmentRead, FileDeleteResult


class FlightRecordInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = None
    airline: Optional[str] = None
    fleet: Optional[str] = None
    flight_number: Optional[str] = None
    tail: Optional[str] = None
    station: Optional[str] = None
    service: Optional[str] = None
    block_time: Optional[str] = None
    out_time: Optional[str] = None
    has_defect: bool = False
    log_page_no: Optional[str] = None
    discrepancy_note: Optional[str] = None
    rectification_note: Optional[str] = None
    system_affected: Optional[str] = None
    defect_status: Optional[str] = None
    technician: Optional[str] = None
    comment: Optional[str] = None


class FlightRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    date: datetime
    airline: str
    fleet: str
    flight_number: Optional[str] = None
    tail: Optional[str] = None
    station: str
    service: Optional[str] = None
    block_time: Optional[str] = None
    out_time: Optional[str] = None
    has_defect: bool
    log_page_no: Optional[str] = None
    discrepancy_note: Optional[str] = None
    rectification_note: Optional[str] = None
    system_affected: Optional[str] = None
    defect_status: Optional[str] = None
    technician: Optional[str] = None
    comment: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRead] = []


class BulkDeleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: List[str] = Field(default_factory=list)


class BulkDeleteResult(BaseModel):
    deleted_count: int
    file_results: List[FileDeleteResult] = []


class TemporaryFlightInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = None
    airline: Optional[str] = None
    station: Optional[str] = None
    flight_number: Optional[str] = None


class FlightCompletionInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fleet: Optional[str] = None
    service: Optional[str] = None
    tail: Optional[str] = None
    has_time: bool = False
    block_time: Optional[str] = None
    out_time: Optional[str] = None
    has_defect: bool = False
    log_page_no: Optional[str] = None
    discrepancy_note: Optional[str] = None
    rectification_note: Optional[str] = None
    system_affected: Optional[str] = None
    defect_status: Optional[str] = None
    has_comment: bool = False
    comment: Optional[str] = None
    technician: Optional[str] = None


class PendingFlightRead(FlightRecordRead):
    days_since_created: int
