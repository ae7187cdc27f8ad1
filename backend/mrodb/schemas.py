# backend/mrodb/schemas.py
"""
Response envelope shared by every router.

Success: {"success": true, "message"?: str, "data": ..., **extra}
Failure bodies are produced by the exception handlers in `mrodb.main`.
"""

from __future__ import annotations

from typing import Any, Optional, Type

from pydantic import BaseModel


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next: bool
    has_prev: bool


def envelope(data: Any = None, *, message: Optional[str] = None, **extra) -> dict:
    body: dict = {"success": True}
    if message:
        body["message"] = message
    body["data"] = data
    body.update(extra)
    return body


def page_envelope(page: dict, schema: Type[BaseModel], **extra) -> dict:
    items = [schema.model_validate(item) for item in page["items"]]
    return envelope(items, pagination=Pagination(**page["pagination"]), **extra)
