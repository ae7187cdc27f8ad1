"""
Accounts services: authentication, company users, permission flags.

Permission rules:
- A permission row is created with PERMISSION_DEFAULTS the first time it
  is needed.
- Only an admin of the same company may change another user's flags or
  privilege; nobody may change their own through these paths.
- Users of another company are reported as not found.
- Admins manage other users only: deactivation and password resets never
  target the acting admin.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...errors import Forbidden, NotFound, Unauthenticated, ValidationError
from . import models

if TYPE_CHECKING:
    from ...security import Principal

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 12


def authenticate(db: Session, username: str, password: str) -> models.User:
    from ...security import verify_password

    identifier = (username or "").strip()
    user = (
        db.query(models.User)
        .filter((models.User.username == identifier) | (models.User.email == identifier.lower()))
        .first()
    )
    if user is None or not user.is_active or not verify_password(password, user.hashed_password):
        raise Unauthenticated("Incorrect username or password")
    return user


def get_company_user(db: Session, principal: "Principal", user_id: str) -> models.User:
    user = (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.company_id == principal.company_id)
        .first()
    )
    if user is None:
        raise NotFound("User")
    return user


def list_company_users(db: Session, principal: "Principal") -> list[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.company_id == principal.company_id)
        .order_by(models.User.last_name.asc(), models.User.first_name.asc(), models.User.id.asc())
        .all()
    )


def get_or_create_permissions(db: Session, user: models.User) -> models.UserPermission:
    row = (
        db.query(models.UserPermission)
        .filter(models.UserPermission.user_id == user.id)
        .first()
    )
    if row is not None:
        return row

    row = models.UserPermission(user_id=user.id, company_id=user.company_id, **models.PERMISSION_DEFAULTS)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created default permissions", extra={"user_id": user.id})
    return row


def ensure_permission(db: Session, principal: "Principal", flag: str) -> None:
    if flag not in models.PERMISSION_DEFAULTS:
        raise ValueError(f"Unknown permission flag: {flag}")
    if principal.is_admin:
        return
    user = get_company_user(db, principal, principal.user_id)
    if not getattr(get_or_create_permissions(db, user), flag):
        raise Forbidden("You do not have permission to perform this action")


def get_permissions(db: Session, principal: "Principal", user_id: Optional[str] = None) -> models.UserPermission:
    target_id = user_id or principal.user_id
    if target_id != principal.user_id and not principal.is_admin:
        raise Forbidden("Only administrators can view other users' permissions")
    user = get_company_user(db, principal, target_id)
    return get_or_create_permissions(db, user)


def update_permissions(
    db: Session,
    principal: "Principal",
    user_id: str,
    flags: Mapping[str, bool],
) -> tuple[models.UserPermission, dict]:
    """
    Upsert `flags` on another user's permission row.

    Returns the row and `{flag: {old, new}}` for the flags that changed.
    """
    if not principal.is_admin:
        raise Forbidden("Only administrators can update permissions")
    if user_id == principal.user_id:
        raise Forbidden("You cannot modify your own permissions")

    unknown = sorted(set(flags) - set(models.PERMISSION_DEFAULTS))
    if unknown:
        raise ValidationError(f"Unknown permission: {unknown[0]}", field="permissions")

    user = get_company_user(db, principal, user_id)
    row = get_or_create_permissions(db, user)

    changes: dict = {}
    for flag, value in flags.items():
        old = bool(getattr(row, flag))
        if old != bool(value):
            changes[flag] = {"old": old, "new": bool(value)}
            setattr(row, flag, bool(value))

    db.commit()
    db.refresh(row)
    return row, changes


def change_privilege(
    db: Session,
    principal: "Principal",
    user_id: str,
    privilege: models.Privilege,
) -> tuple[models.User, Optional[str]]:
    if not principal.is_admin:
        raise Forbidden("Only administrators can change privileges")
    if user_id == principal.user_id:
        raise Forbidden("You cannot change your own privilege")

    user = get_company_user(db, principal, user_id)
    previous = models.Privilege(user.privilege).value
    user.privilege = privilege
    db.commit()
    db.refresh(user)
    return user, previous


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


def _require_admin(principal: "Principal", message: str = "Admin privileges required") -> None:
    if not principal.is_admin:
        raise Forbidden(message)


def _validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", field="new_password"
        )

    has_upper = any(ch.isupper() for ch in password)
    has_lower = any(ch.islower() for ch in password)
    has_digit = any(ch.isdigit() for ch in password)
    has_symbol = any(not ch.isalnum() for ch in password)

    if not (has_upper and has_lower and has_digit and has_symbol):
        raise ValidationError(
            "Password must include upper and lower case letters, a number, and a symbol.",
            field="new_password",
        )


def activity_counts(db: Session, company_id: str) -> dict:
    from ..activity.models import UserActivity

    rows = (
        db.query(UserActivity.user_id, func.count(UserActivity.id))
        .filter(UserActivity.company_id == company_id, UserActivity.user_id.isnot(None))
        .group_by(UserActivity.user_id)
        .all()
    )
    return {user_id: count for user_id, count in rows}


def list_managed_users(db: Session, principal: "Principal") -> list[tuple[models.User, int]]:
    _require_admin(principal)
    counts = activity_counts(db, principal.company_id)
    users = (
        db.query(models.User)
        .filter(models.User.company_id == principal.company_id)
        .order_by(models.User.email.asc(), models.User.id.asc())
        .all()
    )
    return [(user, counts.get(user.id, 0)) for user in users]


def get_managed_user(
    db: Session, principal: "Principal", user_id: str
) -> tuple[models.User, models.UserPermission, int]:
    _require_admin(principal)
    user = get_company_user(db, principal, user_id)
    counts = activity_counts(db, principal.company_id)
    return user, get_or_create_permissions(db, user), counts.get(user.id, 0)


def deactivate_user(db: Session, principal: "Principal", user_id: str) -> models.User:
    """
    Switch another user's account off.

    The row stays so records and activity keep pointing at it; login and
    token resolution already refuse inactive users.
    """
    _require_admin(principal)
    if user_id == principal.user_id:
        raise Forbidden("You cannot deactivate your own account")

    user = get_company_user(db, principal, user_id)
    user.is_active = False
    db.commit()
    db.refresh(user)
    logger.info("Deactivated user", extra={"user_id": user.id, "by": principal.user_id})
    return user


def reset_password(db: Session, principal: "Principal", user_id: str, new_password: str) -> models.User:
    from ...security import get_password_hash

    _require_admin(principal)
    if user_id == principal.user_id:
        raise Forbidden("You cannot reset your own password this way")

    user = get_company_user(db, principal, user_id)
    _validate_password_strength(new_password)
    user.hashed_password = get_password_hash(new_password)
    db.commit()
    db.refresh(user)
    return user


def change_email(db: Session, principal: "Principal", user_id: str, email: str) -> tuple[models.User, str]:
    """
    Change a company user's email. Returns the user and the previous address.

    The new address must share the acting admin's domain and must not
    belong to any other user.
    """
    _require_admin(principal)
    user = get_company_user(db, principal, user_id)

    email = (email or "").strip().lower()
    domain = principal.email.rsplit("@", 1)[-1].lower()
    if email.rsplit("@", 1)[-1] != domain:
        raise ValidationError(f"Email domain must be @{domain}", field="email")

    taken = (
        db.query(models.User.id)
        .filter(func.lower(models.User.email) == email, models.User.id != user.id)
        .first()
    )
    if taken is not None:
        raise ValidationError("Email is already in use", field="email")

    previous = user.email
    user.email = email
    db.commit()
    db.refresh(user)
    return user, previous
