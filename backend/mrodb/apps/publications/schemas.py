from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..storage.schemas import AttachmentRead
from .models import RevisionChangeType


class PublicationInput(BaseModel):
    """Multipart form fields for create and update."""

    model_config = ConfigDict(extra="forbid")

    revision_date: Optional[str] = None
    manual_description: Optional[str] = None
    revision_number: Optional[str] = None
    owner: Optional[str] = None
    comment: Optional[str] = None


class PublicationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    revision_date: datetime
    manual_description: str
    revision_number: str
    owner: str
    comment: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRead] = []


class RevisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    publication_id: str
    change_type: RevisionChangeType
    change_description: str
    changed_fields: Optional[Dict[str, Any]] = None
    previous_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    modified_by: Optional[str] = None
    modified_at: datetime
