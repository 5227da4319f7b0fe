# backend/tapauth/db/session.py
import time
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from tapauth.core.config import settings
from tapauth.core.request_context import get_request_id, record_db_query

logger = logging.getLogger("tapauth")

DATABASE_URL = settings.database_url or "sqlite:///./tapauth.db"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    future=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

SLOW_QUERY_MS = 250.0


@event.listens_for(engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._tapauth_query_start = time.perf_counter()


@event.listens_for(engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = getattr(context, "_tapauth_query_start", None)
    if start is None:
        return

    duration_ms = (time.perf_counter() - start) * 1000.0
    record_db_query(duration_ms)

    if duration_ms >= SLOW_QUERY_MS:
        # No SQL text or params: statements carry emails and codes
        logger.warning(
            "slow_db_query request_id=%s duration_ms=%.2f",
            get_request_id(),
            duration_ms,
        )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
