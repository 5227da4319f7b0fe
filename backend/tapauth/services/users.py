# backend/tapauth/services/users.py
from __future__ import annotations

import logging
import re
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from tapauth.core import timeutil
from tapauth.models import User

logger = logging.getLogger("tapauth.users")

LOGIN_MAX_LEN = 32
_NON_LOGIN_CHARS = re.compile(r"[^\w-]", re.ASCII)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def sanitize_login(raw: str) -> str:
    """Drop everything but ASCII word characters and '-', lowercase."""
    return _NON_LOGIN_CHARS.sub("", raw or "").lower()


def derive_login(email: str, user_id: str) -> str:
    local = normalize_email(email).split("@")[0]
    login = sanitize_login(local)[:LOGIN_MAX_LEN]
    return login or f"user_{user_id.replace('-', '')[:8]}"


class UserDirectory:
    """
    Lookup / create / update of registered users.

    Writes are flushed, not committed: the caller owns the transaction so
    that user creation can commit together with invitation redemption.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        email_norm = normalize_email(email)
        if not email_norm:
            return None
        return self.db.query(User).filter(User.email == email_norm).first()

    def find_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == str(user_id)).first()

    def exists(self, email: str) -> bool:
        return self.find_by_email(email) is not None

    def create(self, email: str, is_admin: bool) -> User:
        email_norm = normalize_email(email)
        user_id = str(uuid.uuid4())
        login = derive_login(email_norm, user_id)
        now = timeutil.utcnow()

        user = User(
            id=user_id,
            login=login,
            name=login,
            avatar_url=None,
            email=email_norm,
            role="admin" if is_admin else None,
            guest=False,
            last_seen_at=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        self.db.flush()

        logger.info("User created id=%s login=%s admin=%s", user_id, login, bool(is_admin))
        return user

    def touch_login(self, user_id: str) -> None:
        now = timeutil.utcnow()
        self.db.query(User).filter(User.id == str(user_id)).update(
            {User.last_seen_at: now, User.updated_at: now, User.guest: False},
            synchronize_session="fetch",
        )
        self.db.flush()
