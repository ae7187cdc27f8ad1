from __future__ import annotations

import pytest
from sqlalchemy import text

from mrodb import serve
from mrodb.apps.accounts.models import Company, Privilege
from mrodb.apps.accounts.services import authenticate
from mrodb.bootstrap import create_company_admin
from mrodb.database import build_engine, is_sqlite
from mrodb.errors import ValidationError


def test_sqlite_engines_enforce_foreign_keys():
    engine = build_engine("sqlite+pysqlite:///:memory:")

    with engine.connect() as connection:
        assert connection.execute(text("PRAGMA foreign_keys")).scalar() == 1
    assert is_sqlite(str(engine.url))


def test_server_options_defaults(monkeypatch):
    for name in ("HOST", "PORT", "RELOAD", "WEB_CONCURRENCY", "SSL_CERTFILE", "SSL_KEYFILE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    options = serve.server_options()

    assert options["host"] == "0.0.0.0"
    assert options["port"] == 8000
    assert options["reload"] is False
    assert options["proxy_headers"] is True
    assert "workers" not in options
    assert "ssl_certfile" not in options


def test_server_options_workers_and_tls(monkeypatch):
    monkeypatch.setenv("WEB_CONCURRENCY", "4")
    monkeypatch.setenv("RELOAD", "false")
    monkeypatch.setenv("SSL_CERTFILE", "/etc/mrodb/cert.pem")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    options = serve.server_options()

    assert options["workers"] == 4
    assert options["ssl_certfile"] == "/etc/mrodb/cert.pem"
    assert options["log_level"] == "warning"


def test_reload_disables_workers(monkeypatch):
    monkeypatch.setenv("WEB_CONCURRENCY", "4")
    monkeypatch.setenv("RELOAD", "yes")

    options = serve.server_options()

    assert options["reload"] is True
    assert "workers" not in options


def _bootstrap(db, **overrides):
    values = {
        "company_code": "hamro",
        "company_name": "Hangar MRO",
        "username": "jdoe",
        "email": "JDoe@Hangar.example",
        "password": "correct-horse-battery",
        "first_name": "Jane",
        "last_name": "Doe",
    }
    values.update(overrides)
    return create_company_admin(db, **values)


def test_bootstrap_creates_company_admin_who_can_log_in(db_session):
    user, created = _bootstrap(db_session)

    assert created is True
    assert user.privilege == Privilege.ADMIN
    assert user.company.code == "HAMRO"
    assert user.email == "jdoe@hangar.example"
    assert authenticate(db_session, "jdoe", "correct-horse-battery").id == user.id


def test_bootstrap_is_idempotent_per_username(db_session):
    first, _ = _bootstrap(db_session)

    again, created = _bootstrap(db_session, password="another-long-password")

    assert created is False
    assert again.id == first.id
    assert db_session.query(Company).count() == 1


@pytest.mark.parametrize(
    "overrides, field",
    [({"password": "short"}, "password"), ({"username": " "}, "username"), ({"company_code": ""}, "company_code")],
)
def test_bootstrap_validates_input(db_session, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        _bootstrap(db_session, **overrides)

    assert excinfo.value.field == field
