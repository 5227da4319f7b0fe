# backend/tapauth/db/init_db.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine

from tapauth.db.base import Base
from tapauth.db.session import engine as default_engine

# Import models so all Base subclasses are registered
import tapauth.models  # noqa: F401

logger = logging.getLogger("tapauth")


def _resolve_sqlite_path(e: Engine) -> Optional[Path]:
    """
    Best-effort: the SQLite file behind the engine, or None for
    :memory: / non-sqlite URLs.
    """
    if e.url.get_backend_name() != "sqlite":
        return None

    db = e.url.database
    if not db or db == ":memory:":
        return None

    p = Path(db)
    if not p.is_absolute():
        p = (Path.cwd() / p).resolve()
    return p


def init_db(engine: Optional[Engine] = None, *, checkfirst: bool = True) -> None:
    """
    Create any missing tables for local development.

    Production schemas are managed with Alembic (backend/migrations); this is
    the quick path for SQLite and for tests.
    """
    e = engine or default_engine
    db_path = _resolve_sqlite_path(e)
    logger.info(
        "Initializing database via Base.metadata.create_all url=%s sqlite_path=%s",
        e.url.render_as_string(hide_password=True),
        db_path,
    )
    Base.metadata.create_all(bind=e, checkfirst=checkfirst)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
