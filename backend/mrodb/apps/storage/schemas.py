from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    file_name: str
    file_key: str
    file_size: int
    file_type: str
    uploaded_by: Optional[str] = None
    created_at: datetime


class FileDeleteResult(BaseModel):
    file_key: str
    success: bool
    error: Optional[str] = None
