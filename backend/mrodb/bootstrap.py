# backend/mrodb/bootstrap.py
"""
Create a company and its first administrator.

There is no self-service sign-up; every tenant starts here:

    mrodb-create-admin --company-code HAMRO --company-name "Hangar MRO" \
        --username jdoe --email jdoe@hangar.example --first-name Jane --last-name Doe

The password comes from --password, then MRODB_ADMIN_PASSWORD, then an
interactive prompt. Re-running with an existing username changes nothing.
"""

from __future__ import annotations

import argparse
import getpass
import os
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from .apps.accounts import models as account_models
from .apps.accounts.services import get_or_create_permissions
from .errors import ValidationError, require_fields
from .security import get_password_hash

MIN_PASSWORD_LENGTH = 10


def create_company_admin(
    db: Session,
    *,
    company_code: str,
    company_name: str,
    username: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> Tuple[account_models.User, bool]:
    """Return `(user, created)`; an existing username is returned untouched."""
    require_fields(
        {
            "company_code": company_code,
            "company_name": company_name,
            "username": username,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
    )
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )

    existing = db.query(account_models.User).filter(account_models.User.username == username.strip()).first()
    if existing is not None:
        return existing, False

    code = company_code.strip().upper()
    company = db.query(account_models.Company).filter(account_models.Company.code == code).first()
    if company is None:
        company = account_models.Company(code=code, name=company_name.strip())
        db.add(company)
        db.flush()

    user = account_models.User(
        company_id=company.id,
        username=username.strip(),
        email=email.strip().lower(),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        privilege=account_models.Privilege.ADMIN,
        hashed_password=get_password_hash(password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    get_or_create_permissions(db, user)
    return user, True


def _password(explicit: Optional[str]) -> str:
    if explicit:
        return explicit
    from_env = os.getenv("MRODB_ADMIN_PASSWORD")
    if from_env:
        return from_env
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match.")
    return first


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(description="Create a company and its first administrator.")
    parser.add_argument("--company-code", required=True)
    parser.add_argument("--company-name", required=True)
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--first-name", required=True)
    parser.add_argument("--last-name", required=True)
    parser.add_argument("--password", help="Defaults to MRODB_ADMIN_PASSWORD or a prompt.")
    args = parser.parse_args(argv)

    from .database import SessionLocal

    db = SessionLocal()
    try:
        user, created = create_company_admin(
            db,
            company_code=args.company_code,
            company_name=args.company_name,
            username=args.username,
            email=args.email,
            password=_password(args.password),
            first_name=args.first_name,
            last_name=args.last_name,
        )
    except ValidationError as exc:
        raise SystemExit(f"[ERROR] {exc.message}")
    finally:
        db.close()

    if created:
        print(f"[OK] Created admin {user.username} (id={user.id}) in company {args.company_code.upper()}")
    else:
        print(f"[INFO] User already exists: id={user.id}, username={user.username}")


if __name__ == "__main__":
    main()
