from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...scoping import ListParams, paginate, scoped_query
from ...security import Principal
from ..accounts.models import User
from . import models

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


@dataclass(frozen=True)
class RequestInfo:
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestInfo":
        if request is None:
            return cls()
        headers = request.headers
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            ip_address = forwarded.split(",")[0].strip() or UNKNOWN
        else:
            ip_address = headers.get("x-real-ip") or UNKNOWN
        return cls(
            ip_address=ip_address,
            user_agent=headers.get("user-agent") or UNKNOWN,
        )


def log_activity(
    db: Session,
    principal: Principal,
    *,
    action: models.ActivityAction,
    resource_type: str,
    resource_id: Optional[str] = None,
    resource_title: Optional[str] = None,
    metadata: Optional[dict] = None,
    request_info: Optional[RequestInfo] = None,
) -> Optional[models.UserActivity]:
    """
    Best-effort activity logger.

    Called after the primary change has been committed. Any failure is
    rolled back and logged; it never reaches the caller.
    """
    info = request_info or RequestInfo()
    try:
        entry = models.UserActivity(
            company_id=principal.company_id,
            user_id=principal.user_id,
            action=getattr(action, "value", action),
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            resource_title=(resource_title or None) and resource_title[:255],
            metadata_json=metadata,
            ip_address=info.ip_address[:64],
            user_agent=info.user_agent[:512],
        )
        db.add(entry)
        db.commit()
        return entry
    except Exception as exc:
        db.rollback()
        logger.warning(
            "Activity log write failed",
            extra={
                "action": getattr(action, "value", action),
                "resource_type": resource_type,
                "resource_id": resource_id,
                "error": str(exc),
            },
        )
        return None


def list_activities(
    db: Session,
    principal: Principal,
    *,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: Optional[str] = None,
    self_scoped: bool = True,
    page: int = 1,
    limit: int = 20,
) -> dict:
    Activity = models.UserActivity
    params = ListParams(
        date_field=Activity.created_at,
        start=start_date,
        end=end_date,
        owner_field=Activity.user_id if self_scoped else None,
    )
    query = scoped_query(db, principal, Activity, params)
    if action:
        query = query.filter(Activity.action.ilike(f"%{action.strip()}%"))
    if resource_type:
        query = query.filter(Activity.resource_type == resource_type)
    if user_id:
        query = query.filter(Activity.user_id == user_id)
    return paginate(query, Activity.created_at, Activity.id, page, limit)


def users_with_activities(db: Session, principal: Principal) -> list:
    """Company users with at least one logged action, with their counts."""
    Activity = models.UserActivity
    counts = (
        db.query(Activity.user_id, func.count(Activity.id).label("activity_count"))
        .filter(Activity.company_id == principal.company_id, Activity.user_id.isnot(None))
        .group_by(Activity.user_id)
        .subquery()
    )
    return (
        db.query(User, counts.c.activity_count)
        .join(counts, counts.c.user_id == User.id)
        .filter(User.company_id == principal.company_id)
        .order_by(User.first_name.asc(), User.last_name.asc(), User.id.asc())
        .all()
    )
