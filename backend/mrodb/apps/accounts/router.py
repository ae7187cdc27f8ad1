from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from ...database import get_db
from ...schemas import envelope
from ...security import Principal, create_access_token, get_current_admin, get_current_principal
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from . import schemas, services

auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/login", response_model=schemas.Token)
def login(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    user = services.authenticate(db, form.username, form.password)
    token = create_access_token(data={"sub": user.id, "company_id": user.company_id})
    log_activity(
        db,
        Principal.from_user(user),
        action=ActivityAction.LOGGED_IN,
        resource_type="user",
        resource_id=user.id,
        resource_title=user.username,
        request_info=RequestInfo.from_request(request),
    )
    return schemas.Token(access_token=token)


@router.get("/me")
def read_me(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = services.get_company_user(db, principal, principal.user_id)
    return envelope(schemas.UserRead.model_validate(user))


@router.get("/company")
def list_company_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    users = services.list_company_users(db, principal)
    return envelope([schemas.UserRead.model_validate(u) for u in users])


@router.get("/permissions")
def get_user_permissions(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    row = services.get_permissions(db, principal, user_id)
    return envelope(schemas.UserPermissionRead.model_validate(row))


@router.patch("/permissions")
def update_user_permissions(
    payload: schemas.UserPermissionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    row, changes = services.update_permissions(db, principal, payload.user_id, payload.permissions)
    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_USER_PERMISSIONS,
        resource_type="user_permission",
        resource_id=payload.user_id,
        resource_title=row.user.username if row.user is not None else None,
        metadata={"changes": changes},
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.UserPermissionRead.model_validate(row), message="Permissions updated")


@router.patch("/{user_id}/privilege")
def update_user_privilege(
    user_id: str,
    payload: schemas.PrivilegeUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    user, previous = services.change_privilege(db, principal, user_id, payload.privilege)
    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_USER_PRIVILEGE,
        resource_type="user",
        resource_id=user.id,
        resource_title=user.username,
        metadata={"old": previous, "new": payload.privilege.value},
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.UserRead.model_validate(user), message="Privilege updated")


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


def _managed_read(user, activity_count: int) -> schemas.ManagedUserRead:
    return schemas.ManagedUserRead.model_validate(user).model_copy(update={"activity_count": activity_count})


@router.get("/manage")
def list_managed_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    rows = services.list_managed_users(db, principal)
    return envelope([_managed_read(user, count) for user, count in rows])


@router.get("/manage/{user_id}")
def get_managed_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    user, permission, count = services.get_managed_user(db, principal, user_id)
    detail = schemas.ManagedUserDetail.model_validate(user).model_copy(
        update={
            "activity_count": count,
            "permissions": schemas.UserPermissionRead.model_validate(permission),
        }
    )
    return envelope(detail)


@router.delete("/manage/{user_id}")
def deactivate_managed_user(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    user = services.deactivate_user(db, principal, user_id)
    log_activity(
        db,
        principal,
        action=ActivityAction.DEACTIVATED_USER,
        resource_type="user",
        resource_id=user.id,
        resource_title=f"{user.full_name} ({user.email})",
        metadata={"user": {"id": user.id, "name": user.full_name, "email": user.email}},
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.UserRead.model_validate(user), message="User deactivated")


@router.post("/manage/{user_id}/reset-password")
def reset_managed_user_password(
    user_id: str,
    payload: schemas.PasswordReset,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    user = services.reset_password(db, principal, user_id, payload.new_password)
    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_USER,
        resource_type="user",
        resource_id=user.id,
        resource_title=f"{user.full_name} ({user.email})",
        metadata={"action": "password_reset"},
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.UserRead.model_validate(user), message="Password reset")


@router.patch("/manage/{user_id}/email")
def change_managed_user_email(
    user_id: str,
    payload: schemas.EmailChange,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    user, previous = services.change_email(db, principal, user_id, payload.email)
    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_USER,
        resource_type="user",
        resource_id=user.id,
        resource_title=user.full_name,
        metadata={"action": "email_update", "old_email": previous, "new_email": user.email},
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.UserRead.model_validate(user), message="User email updated successfully")
