# backend/tapauth/services/guest.py
from __future__ import annotations

import logging
import uuid
from typing import Optional

from tapauth.core.config import AuthConfig
from tapauth.core.security import GUEST_SESSION_TTL, SessionTokenIssuer
from tapauth.schemas import AuthResult, SessionClaims
from tapauth.services.users import LOGIN_MAX_LEN, sanitize_login

logger = logging.getLogger("tapauth.guest")


class GuestSessionService:
    """
    Stateless guest identities: a signed 24h token and nothing else.
    No database session is taken here on purpose.
    """

    def __init__(self, config: AuthConfig):
        self.issuer = SessionTokenIssuer(config)

    def create(self, nickname: Optional[str] = None) -> AuthResult:
        guest_id = str(uuid.uuid4())
        trimmed = nickname.strip()[:LOGIN_MAX_LEN] if isinstance(nickname, str) else ""

        login = sanitize_login(trimmed) or f"guest_{guest_id[:8]}"
        name = trimmed or f"Guest {guest_id[:4].upper()}"

        claims = SessionClaims(
            sub=guest_id,
            login=login,
            name=name,
            role=None,
            guest=True,
        )
        token = self.issuer.issue(claims, GUEST_SESSION_TTL)

        logger.info("Guest session issued sub=%s", guest_id)
        return AuthResult(token=token, user=claims)
