# backend/tapauth/services/admin_policy.py
"""
Single place where "is this an administrator?" is decided.

Two independent signals, either one is enough:
- the stored role column (`role == "admin"`)
- the configured allowlist (ADMIN_EMAILS)
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from tapauth.core.config import AuthConfig
from tapauth.services.users import normalize_email

ADMIN_ROLE = "admin"


class AdminPolicy:
    def __init__(self, admin_emails: Iterable[str]):
        self._allowlist = frozenset(
            normalize_email(e) for e in admin_emails if normalize_email(e)
        )

    @classmethod
    def from_config(cls, config: AuthConfig) -> "AdminPolicy":
        return cls(config.admin_emails)

    def is_admin_email(self, email: Optional[str]) -> bool:
        return normalize_email(email or "") in self._allowlist

    def is_admin(self, user: Any) -> bool:
        """
        `user` is anything with `email` and `role` attributes
        (a User row or SessionClaims).
        """
        if user is None:
            return False
        role = (getattr(user, "role", None) or "").strip().lower()
        if role == ADMIN_ROLE:
            return True
        return self.is_admin_email(getattr(user, "email", None))
