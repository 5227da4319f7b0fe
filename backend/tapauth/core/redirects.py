# backend/tapauth/core/redirects.py
from __future__ import annotations

import json
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urljoin, urlsplit, urlunsplit

from tapauth.schemas import SessionClaims

SAFE_SCHEMES = {"http", "https"}

# Characters encodeURIComponent leaves as-is
URI_COMPONENT_SAFE = "-_.!~*'()"


def _is_absolute_http(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in SAFE_SCHEMES and bool(parts.netloc)


def normalize_redirect_target(raw: Optional[str], base: Optional[str] = None) -> Optional[str]:
    """
    Accept a caller-supplied redirect only when it resolves to an http(s) URL.

    Relative targets are resolved against `base`. `javascript:`, `data:`,
    malformed input or anything else returns None.
    """
    candidate = (raw or "").strip()
    if not candidate:
        return None

    try:
        scheme = urlsplit(candidate).scheme.lower()
    except ValueError:
        return None

    if scheme:
        if scheme not in SAFE_SCHEMES:
            return None
        resolved = candidate
    else:
        if not base or not _is_absolute_http(base):
            return None
        try:
            resolved = urljoin(base, candidate)
        except ValueError:
            return None

    return resolved if _is_absolute_http(resolved) else None


def _with_query_params(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", urlencode(query), parts.fragment))


def build_login_redirect_url(login_url: Optional[str], redirect_target: Optional[str]) -> Optional[str]:
    if not login_url:
        return None
    if not redirect_target:
        return login_url

    if _is_absolute_http(login_url):
        return _with_query_params(login_url, redirect=redirect_target)

    separator = "&" if "?" in login_url else "?"
    return f"{login_url}{separator}redirect={quote(redirect_target, safe='')}"


def append_auth_params(redirect_target: str, token: str, user: SessionClaims) -> Optional[str]:
    """
    Hand the session over to another origin via query params.
    """
    if not _is_absolute_http(redirect_target):
        return None
    user_json = json.dumps(user.model_dump(by_alias=True), ensure_ascii=False, separators=(",", ":"))
    # Clients read tap_user with decodeURIComponent after the query string is parsed
    return _with_query_params(
        redirect_target,
        tap_token=token,
        tap_user=quote(user_json, safe=URI_COMPONENT_SAFE),
    )
