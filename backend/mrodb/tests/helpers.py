from __future__ import annotations

from starlette.requests import Request

from mrodb.apps.accounts import models as account_models
from mrodb.apps.storage.backends import LocalStorage
from mrodb.apps.storage.service import IncomingFile
from mrodb.security import Principal


def make_company(db, code: str, name: str | None = None) -> account_models.Company:
    company = account_models.Company(code=code, name=name or f"{code} Aviation")
    db.add(company)
    db.commit()
    return company


def make_user(
    db,
    company: account_models.Company,
    username: str,
    privilege: account_models.Privilege = account_models.Privilege.TECHNICIAN,
    hashed_password: str = "not-a-password-hash",
) -> account_models.User:
    user = account_models.User(
        company_id=company.id,
        username=username,
        email=f"{username}@example.com",
        first_name=username.capitalize(),
        last_name="Tester",
        privilege=privilege,
        hashed_password=hashed_password,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def principal_for(user: account_models.User) -> Principal:
    return Principal.from_user(user)


def make_file(name: str = "manual.pdf", data: bytes = b"%PDF-1.4 test", content_type: str = "application/pdf") -> IncomingFile:
    return IncomingFile(file_name=name, content_type=content_type, data=data)


def make_request(headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/",
            "headers": headers or [(b"user-agent", b"pytest")],
            "client": ("127.0.0.1", 1234),
        }
    )


class FailingUploadStorage(LocalStorage):
    def upload(self, data, key, content_type=None):
        raise RuntimeError("storage unavailable")


class RecordingStorage(LocalStorage):
    """Local storage that records delete attempts and can refuse some of them."""

    def __init__(self, root, fail_keys_containing: str | None = None):
        super().__init__(root)
        self.fail_keys_containing = fail_keys_containing
        self.delete_attempts: list[str] = []

    def delete(self, key):
        self.delete_attempts.append(key)
        if self.fail_keys_containing and self.fail_keys_containing in key:
            raise RuntimeError("delete refused")
        super().delete(key)
