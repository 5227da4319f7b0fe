# backend/tests/conftest.py
from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tapauth.core.config import AuthConfig, get_auth_config
from tapauth.db.base import Base
from tapauth.db.session import get_db
from tapauth.models import InvitationCode, User
from tapauth.services import verification

TEST_SECRET = "test-secret-not-for-prod"
ALLOWLISTED_ADMIN = "boss@example.com"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture()
def engine():
    """
    Shared in-memory SQLite.

    StaticPool keeps one connection so the DB survives across sessions,
    which the API needs because every request opens its own session.
    """
    engine = create_engine(
        "sqlite+pysqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import tapauth.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def config() -> AuthConfig:
    return AuthConfig(
        jwt_secret=TEST_SECRET,
        admin_emails=(ALLOWLISTED_ADMIN,),
        cookie_domain="tapcanvas.com",
    )


@pytest.fixture()
def outbox(monkeypatch):
    """
    Replace the email sender used by the verification service.
    Every "sent" message lands here; flip `outbox.fail = True` to simulate
    a delivery failure.
    """

    class _Outbox(list):
        fail = False

    box = _Outbox()

    def _fake_send_email(config, *, to_email: str, subject: str, text_body: str, html_body=None) -> bool:
        box.append({"to": to_email, "subject": subject, "text": text_body, "html": html_body})
        return not box.fail

    monkeypatch.setattr(verification, "send_email", _fake_send_email)
    return box


def last_code(outbox) -> str:
    assert outbox, "no email was sent"
    m = re.search(r"(\d{6})", outbox[-1]["text"])
    assert m, outbox[-1]["text"]
    return m.group(1)


def make_user(db, email: str, *, role: Optional[str] = None, login: Optional[str] = None) -> User:
    now = _utcnow()
    user = User(
        id=str(uuid.uuid4()),
        login=login or email.split("@")[0],
        name=login or email.split("@")[0],
        email=email,
        role=role,
        guest=False,
        last_seen_at=None,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_invitation(
    db,
    created_by: str,
    *,
    code: Optional[str] = None,
    is_used: bool = False,
    expires_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> InvitationCode:
    inv = InvitationCode(
        id=str(uuid.uuid4()),
        code=code or uuid.uuid4().hex,
        created_by=created_by,
        is_used=is_used,
        expires_at=expires_at,
        created_at=created_at or _utcnow(),
    )
    db.add(inv)
    db.commit()
    db.refresh(inv)
    return inv


@pytest.fixture()
def admin(db) -> User:
    return make_user(db, "root@example.com", role="admin", login="root")


@pytest.fixture()
def client(session_factory, config, outbox):
    from tapauth.main import app

    def _override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_auth_config] = lambda: config
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def days_ago(n: int) -> datetime:
    return _utcnow() - timedelta(days=n)
