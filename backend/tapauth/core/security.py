from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from tapauth.core.config import AuthConfig, get_auth_config
from tapauth.schemas import SessionClaims

logger = logging.getLogger("tapauth.security")

REGISTERED_SESSION_TTL = 7 * 24 * 60 * 60
GUEST_SESSION_TTL = 24 * 60 * 60

SESSION_COOKIE_NAME = "tap_token"


def _http_401(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class SessionTokenIssuer:
    """
    Signs SessionClaims into a compact HS256 token (header.payload.signature).

    The signing key only ever comes from the AuthConfig handed in.
    """

    def __init__(self, config: AuthConfig):
        self._secret = config.jwt_secret
        self._algorithm = config.jwt_algorithm

    def issue(self, claims: SessionClaims, ttl_seconds: int, *, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        to_encode: Dict[str, Any] = claims.model_dump(by_alias=True)
        to_encode["exp"] = int((issued_at + timedelta(seconds=int(ttl_seconds))).timestamp())
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry. Raises JWTError on any failure.
        """
        return jwt.decode(token, self._secret, algorithms=[self._algorithm])

    def decode_claims(self, token: str) -> SessionClaims:
        return SessionClaims.model_validate(self.decode(token))


@dataclass
class ResolvedAuth:
    token: str
    claims: SessionClaims


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()

    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie and cookie.strip():
        return cookie.strip()
    return None


def resolve_auth(request: Request, config: AuthConfig) -> Optional[ResolvedAuth]:
    """
    Re-derive the caller's identity from a Bearer header or the session cookie.
    Returns None when there is no token or it does not verify.
    """
    token = _token_from_request(request)
    if not token:
        return None

    try:
        claims = SessionTokenIssuer(config).decode_claims(token)
    except (JWTError, ValueError):
        logger.info("Rejected session token (invalid or expired)")
        return None

    return ResolvedAuth(token=token, claims=claims)


def get_optional_auth(
    request: Request,
    config: AuthConfig = Depends(get_auth_config),
) -> Optional[ResolvedAuth]:
    return resolve_auth(request, config)


def require_auth(
    resolved: Optional[ResolvedAuth] = Depends(get_optional_auth),
) -> ResolvedAuth:
    if resolved is None:
        raise _http_401()
    return resolved
