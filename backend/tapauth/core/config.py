# backend/tapauth/core/config.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from json import loads as json_loads, JSONDecodeError
from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tapauth.core.errors import ConfigurationError

INSECURE_SECRETS = {"dev-secret", "supersecret", "changeme", "secret"}


def _split_list(raw) -> List[str]:
    """
    Accept either a comma-separated string or a JSON list and return clean items.
    """
    if not raw:
        return []

    if isinstance(raw, list):
        return [str(o).strip() for o in raw if str(o).strip()]

    raw_str = str(raw).strip()

    if raw_str.startswith("[") and raw_str.endswith("]"):
        try:
            parsed = json_loads(raw_str)
            if isinstance(parsed, list):
                return [str(o).strip() for o in parsed if str(o).strip()]
        except JSONDecodeError:
            # Fall back to naive split if JSON is malformed
            pass

    return [o.strip() for o in raw_str.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Central configuration for the TapCanvas auth backend.

    All values come from environment variables or backend/.env.
    This is the single source of truth for:
    - environment (dev/staging/prod)
    - database URL
    - session token signing
    - admin allowlist
    - email delivery
    - CORS / docs toggles
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # High-level environment flags
    environment: str = Field(
        default="dev",
        description="Deployment environment identifier (dev|staging|prod)",
    )
    debug: bool = Field(default=True)

    # Database
    database_url: str = Field(
        default="sqlite:///./tapauth.db",
        description="SQLAlchemy-style DB URL (SQLite for dev, Postgres in prod).",
    )

    # Session tokens
    jwt_secret: str = Field(
        default="dev-secret",
        description="Session token signing secret; override in all non-dev environments.",
    )
    jwt_algorithm: str = Field(default="HS256")

    # Admin allowlist
    admin_emails: str = Field(
        default="admin@example.com",
        description='Comma-separated string or JSON list, e.g. "a@x.com,b@y.com".',
    )

    # Login page used by /auth/session when the caller is not authenticated
    login_url: Optional[str] = Field(default=None)

    # Shared apex for the session cookie (Domain=.tapcanvas.com)
    cookie_domain: str = Field(default="tapcanvas.com")

    # Email delivery
    email_provider: str = Field(
        default="log",
        description="log | resend | smtp",
    )
    email_from: str = Field(default="TapCanvas <no-reply@tapcanvas.com>")
    resend_api_key: Optional[str] = Field(default=None)
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=465)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)

    # CORS / frontends
    allowed_origins: str = Field(
        default=(
            "http://localhost:5173,"
            "http://127.0.0.1:5173,"
            "https://tapcanvas.com,"
            "https://app.tapcanvas.com"
        ),
    )

    enable_docs: bool = Field(default=False)

    def origins_list(self) -> List[str]:
        return _split_list(self.allowed_origins)

    def admin_email_list(self) -> List[str]:
        return [e.lower() for e in _split_list(self.admin_emails)]

    @property
    def is_prod(self) -> bool:
        return self.environment.lower() in {"prod", "production"}


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the app only parses env once.
    """
    return Settings()


settings = get_settings()


@dataclass(frozen=True)
class AuthConfig:
    """
    Immutable per-request view of the settings the auth services need.

    Built once per request (see `get_auth_config`) and passed explicitly into
    every service; services never read `settings` directly.
    """

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    admin_emails: Tuple[str, ...] = ()
    login_url: Optional[str] = None
    cookie_domain: str = "tapcanvas.com"
    is_prod: bool = False
    debug: bool = True

    email_provider: str = "log"
    email_from: str = "TapCanvas <no-reply@tapcanvas.com>"
    resend_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True

    @classmethod
    def from_settings(cls, s: Settings) -> "AuthConfig":
        secret = (s.jwt_secret or "").strip()
        if not secret:
            raise ConfigurationError("JWT_SECRET is not configured.")
        # Hard guard: never allow a well-known secret in production-like envs
        if s.is_prod and secret in INSECURE_SECRETS:
            raise ConfigurationError(
                "Insecure JWT_SECRET configured in production environment. "
                "Set a strong random secret via the JWT_SECRET env var."
            )

        return cls(
            jwt_secret=secret,
            jwt_algorithm=s.jwt_algorithm,
            admin_emails=tuple(s.admin_email_list()),
            login_url=(s.login_url or "").strip() or None,
            cookie_domain=(s.cookie_domain or "").strip().lstrip(".").lower(),
            is_prod=s.is_prod,
            debug=s.debug,
            email_provider=(s.email_provider or "log").strip().lower(),
            email_from=s.email_from,
            resend_api_key=s.resend_api_key,
            smtp_host=s.smtp_host,
            smtp_port=s.smtp_port,
            smtp_user=s.smtp_user,
            smtp_password=s.smtp_password,
            smtp_use_tls=s.smtp_use_tls,
        )


def get_auth_config() -> AuthConfig:
    """
    FastAPI dependency: fresh immutable config for the current request.
    """
    return AuthConfig.from_settings(get_settings())
