# backend/tapauth/core/cookies.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Response

from tapauth.core.security import (
    GUEST_SESSION_TTL,
    REGISTERED_SESSION_TTL,
    SESSION_COOKIE_NAME,
)


@dataclass(frozen=True)
class CookieOptions:
    max_age: int
    samesite: str
    secure: bool
    domain: Optional[str] = None
    path: str = "/"
    httponly: bool = False


def _is_local_host(host: str) -> bool:
    return "localhost" in host or "127.0.0.1" in host


def resolve_cookie_options(
    host_header: Optional[str],
    *,
    cookie_domain: str,
    is_guest: bool = False,
) -> CookieOptions:
    """
    Cookie attributes for the session token, based on the request's Host.

    - localhost / 127.0.0.1 (any port): SameSite=Lax, not Secure, no Domain
    - everything else: SameSite=None, Secure, and Domain=.<cookie_domain>
      when the host is the apex or one of its subdomains
    """
    host = (host_header or "").strip().lower().split(":")[0]
    max_age = GUEST_SESSION_TTL if is_guest else REGISTERED_SESSION_TTL

    if _is_local_host(host):
        return CookieOptions(max_age=max_age, samesite="lax", secure=False)

    apex = (cookie_domain or "").strip().lstrip(".").lower()
    domain = None
    if apex and (host == apex or host.endswith("." + apex)):
        domain = "." + apex

    return CookieOptions(max_age=max_age, samesite="none", secure=True, domain=domain)


def attach_auth_cookie(
    response: Response,
    token: str,
    *,
    host_header: Optional[str],
    cookie_domain: str,
    is_guest: bool = False,
) -> CookieOptions:
    opts = resolve_cookie_options(host_header, cookie_domain=cookie_domain, is_guest=is_guest)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=opts.max_age,
        path=opts.path,
        domain=opts.domain,
        secure=opts.secure,
        httponly=opts.httponly,
        samesite=opts.samesite,
    )
    return opts
