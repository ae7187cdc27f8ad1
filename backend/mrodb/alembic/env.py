# backend/mrodb/alembic/env.py
"""
Migration environment for the MRO portal schema.

Online runs reuse the application's write engine. Offline runs
(`alembic upgrade --sql`) need only a URL, taken from alembic.ini or,
when that still holds the template placeholder, from the same env vars
the application reads. SQLite targets use batch mode because SQLite
cannot ALTER most constraints in place.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context

# env.py lives at backend/mrodb/alembic/; `mrodb` must import from backend/.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _offline_url() -> str:
    url = (config.get_main_option("sqlalchemy.url") or "").strip()
    if not url or url.startswith("driver://"):
        url = (os.getenv("DATABASE_WRITE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("Set sqlalchemy.url in alembic.ini or DATABASE_WRITE_URL / DATABASE_URL.")
    return url


def _configure(**kwargs) -> None:
    from mrodb import models as _registered_models  # noqa: F401
    from mrodb.database import Base, is_sqlite

    url = kwargs.get("url") or str(kwargs["connection"].engine.url)
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=is_sqlite(url),
        **kwargs,
    )


def run_migrations_offline() -> None:
    url = _offline_url()
    # mrodb.database refuses to import without a URL in the environment.
    os.environ.setdefault("DATABASE_URL", url)
    _configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    from mrodb.database import write_engine

    with write_engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
