from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_read_db
from ...schemas import envelope, page_envelope
from ...security import Principal, get_current_admin, get_current_principal
from . import schemas, services

router = APIRouter(prefix="/user-activity", tags=["user-activity"])


@router.get("", summary="Activity of the current user (admins see the whole company)")
def list_my_activity(
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    result = services.list_activities(
        db,
        principal,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.UserActivityRead)


@router.get("/all-users", summary="Company-wide activity (admin only)")
def list_company_activity(
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_admin),
):
    result = services.list_activities(
        db,
        principal,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
        self_scoped=False,
        page=page,
        limit=limit,
    )
    return page_envelope(result, schemas.UserActivityRead)


@router.get("/users-with-activities", summary="Company users that have logged activity (admin only)")
def list_users_with_activities(
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_admin),
):
    rows = services.users_with_activities(db, principal)
    return envelope(
        [
            schemas.ActiveUserRead(
                id=user.id,
                first_name=user.first_name,
                last_name=user.last_name,
                username=user.username,
                email=user.email,
                activity_count=count,
            )
            for user, count in rows
        ]
    )
