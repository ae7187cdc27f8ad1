# backend/mrodb/security.py

"""
Security helpers for the MRO portal.

Responsibilities:
- Password hashing and verification
- JWT access token creation and decoding
- Principal resolution: every protected route receives an immutable
  `Principal` built from the token subject and the user row. The tenant
  (`company_id`) is only ever taken from here, never from the payload.
- Admin and capability-flag guards for router dependencies
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .errors import Forbidden, Unauthenticated
from .apps.accounts import models as account_models
from .apps.accounts.models import Privilege

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
    )
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 60

# auto_error=False: a missing token must reach the Unauthenticated envelope.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# ---------------------------------------------------------------------------
# PASSWORD HASHING
# ---------------------------------------------------------------------------

_pwd_hasher = PasswordHasher(
    time_cost=int(os.getenv("ARGON2_TIME_COST", "3")),
    memory_cost=int(os.getenv("ARGON2_MEMORY_COST", "65536")),  # KiB (64MB)
    parallelism=int(os.getenv("ARGON2_PARALLELISM", "2")),
    hash_len=int(os.getenv("ARGON2_HASH_LEN", "32")),
    salt_len=int(os.getenv("ARGON2_SALT_LEN", "16")),
)


def _is_argon2_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith("$argon2")


def _is_bcrypt_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith(("$2a$", "$2b$", "$2y$"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if the plain password matches the hash."""
    if not plain_password or not hashed_password:
        return False

    if _is_argon2_hash(hashed_password):
        try:
            return _pwd_hasher.verify(hashed_password, plain_password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    # Accounts imported from the previous portal still carry bcrypt hashes.
    if _is_bcrypt_hash(hashed_password):
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            return False

    return False


def get_password_hash(password: str) -> str:
    """Hash a password for storing in the database (Argon2id)."""
    return _pwd_hasher.hash(password)


# ---------------------------------------------------------------------------
# JWT TOKENS
# ---------------------------------------------------------------------------


def create_access_token(
    *,
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT.

    The `data` dict should already include the subject, e.g.:
        {"sub": user.id, "company_id": user.company_id}
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise Unauthenticated("Could not validate credentials")


# ---------------------------------------------------------------------------
# PRINCIPAL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Principal:
    user_id: str
    company_id: str
    privilege: Privilege
    first_name: str
    last_name: str
    email: str
    username: str = ""
    company_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.privilege == Privilege.ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_user(cls, user: account_models.User) -> "Principal":
        return cls(
            user_id=user.id,
            company_id=user.company_id,
            privilege=Privilege(user.privilege),
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            username=user.username,
            company_name=user.company.name if user.company is not None else "",
        )


def get_user_by_id(db: Session, user_id) -> Optional[account_models.User]:
    if user_id is None:
        return None
    return (
        db.query(account_models.User)
        .filter(account_models.User.id == str(user_id).strip())
        .first()
    )


def resolve_principal(db: Session, token: Optional[str]) -> Principal:
    """
    Turn a bearer token into a Principal or fail closed.

    Missing, malformed or expired tokens and unknown or inactive users all
    raise Unauthenticated.
    """
    if not token:
        raise Unauthenticated()

    payload = decode_access_token(token)
    user = get_user_by_id(db, payload.get("sub"))
    if user is None or not user.is_active:
        raise Unauthenticated("Could not validate credentials")
    return Principal.from_user(user)


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    return resolve_principal(db, token)


def require_admin(principal: Principal) -> None:
    """Fail before any persistence access when the principal is not an admin."""
    if not principal.is_admin:
        raise Forbidden("Administrator privilege required")


def get_current_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    require_admin(principal)
    return principal


def require_permission(flag: str) -> Callable[..., Principal]:
    """
    Dependency factory gating a route on one UserPermission flag.

    Admins always pass; everyone else needs the flag set on their row.
    """
    from .apps.accounts.services import ensure_permission

    def _dependency(
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> Principal:
        ensure_permission(db, principal, flag)
        return principal

    _dependency.__name__ = f"require_{flag}"
    return _dependency
