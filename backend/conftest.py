from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "test"

from mrodb.database import Base  # noqa: E402
from mrodb import models as _registered_models  # noqa: E402,F401
from mrodb.apps.accounts.models import Privilege  # noqa: E402
from mrodb.tests.helpers import (  # noqa: E402
    FailingUploadStorage,
    RecordingStorage,
    make_company,
    make_user,
    principal_for,
)


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def tenants(db_session):
    """Two companies, each with an admin and a technician."""
    alpha = make_company(db_session, "ALPHA")
    bravo = make_company(db_session, "BRAVO")
    users = {
        "alpha_admin": make_user(db_session, alpha, "alpha_admin", Privilege.ADMIN),
        "alpha_tech": make_user(db_session, alpha, "alpha_tech", Privilege.TECHNICIAN),
        "bravo_admin": make_user(db_session, bravo, "bravo_admin", Privilege.ADMIN),
        "bravo_tech": make_user(db_session, bravo, "bravo_tech", Privilege.TECHNICIAN),
    }
    return {
        "alpha": alpha,
        "bravo": bravo,
        "users": users,
        "principals": {name: principal_for(user) for name, user in users.items()},
    }


@pytest.fixture()
def storage(tmp_path):
    return RecordingStorage(tmp_path / "blobs")


@pytest.fixture()
def failing_upload_storage(tmp_path):
    return FailingUploadStorage(tmp_path / "blobs")
