from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..storage.schemas import AttachmentRead


class SmsReportInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = None
    report_title: Optional[str] = None
    report_description: Optional[str] = None
    time_of_event: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_email: Optional[str] = None


class SmsReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    report_number: str
    user_id: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_email: Optional[str] = None
    date: datetime
    time_of_event: Optional[str] = None
    report_title: str
    report_description: str
    has_attachments: bool
    created_at: datetime
    attachments: List[AttachmentRead] = []
