# backend/tapauth/core/email.py
from __future__ import annotations

import json
import logging
import smtplib
import urllib.error
import urllib.request
from email.message import EmailMessage
from typing import Optional

from tapauth.core.config import AuthConfig
from tapauth.core.errors import ConfigurationError

logger = logging.getLogger("tapauth")

SEND_TIMEOUT_SECONDS = 10
RESEND_API_URL = "https://api.resend.com/emails"


def _missing_credentials(config: AuthConfig, provider: str, *, to_email: str, subject: str,
                         text_body: str, html_body: Optional[str]) -> bool:
    """
    Prod: refuse to pretend we sent anything. Elsewhere: log mode.
    """
    if config.is_prod:
        logger.error("EMAIL_PROVIDER=%s but credentials are not configured", provider)
        raise ConfigurationError("邮件服务未配置")

    logger.warning("EMAIL_PROVIDER=%s but credentials are not configured; falling back to log mode.", provider)
    _log_email(to_email=to_email, subject=subject, text_body=text_body, html_body=html_body)
    return True


def _send_resend(
    config: AuthConfig,
    *,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str],
) -> bool:
    """
    Send via the Resend REST API (stdlib urllib, no extra deps).
    """
    if not config.resend_api_key:
        return _missing_credentials(config, "resend", to_email=to_email, subject=subject,
                                    text_body=text_body, html_body=html_body)

    payload = {
        "from": config.email_from,
        "to": [to_email],
        "subject": subject,
        "text": text_body,
    }
    if html_body:
        payload["html"] = html_body

    req = urllib.request.Request(
        url=RESEND_API_URL,
        data=json.dumps(payload).encode("utf-8"),
        method="POST",
        headers={
            "Authorization": f"Bearer {config.resend_api_key}",
            "Content-Type": "application/json",
        },
    )

    try:
        with urllib.request.urlopen(req, timeout=SEND_TIMEOUT_SECONDS) as resp:
            _ = resp.read()
        logger.info("Email sent via Resend to=%s subject=%s", to_email, subject)
        return True
    except urllib.error.HTTPError as e:
        body = ""
        try:
            body = e.read().decode("utf-8", errors="replace")[:500]
        except Exception:
            pass
        logger.error("Resend HTTPError status=%s body=%s", getattr(e, "code", None), body)
        return False
    except Exception:
        # URLError, socket.timeout, ...
        logger.exception("Resend send failed")
        return False


def _send_smtp(
    config: AuthConfig,
    *,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str],
) -> bool:
    if not (config.smtp_host and config.smtp_user and config.smtp_password):
        return _missing_credentials(config, "smtp", to_email=to_email, subject=subject,
                                    text_body=text_body, html_body=html_body)

    msg = EmailMessage()
    msg["From"] = config.email_from
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    try:
        # 465 is implicit TLS; anything else upgrades with STARTTLS when enabled
        if config.smtp_port == 465:
            server = smtplib.SMTP_SSL(config.smtp_host, config.smtp_port, timeout=SEND_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=SEND_TIMEOUT_SECONDS)
        with server:
            if config.smtp_port != 465 and config.smtp_use_tls:
                server.starttls()
            server.login(config.smtp_user, config.smtp_password)
            server.send_message(msg)
        logger.info("Email sent via SMTP to=%s subject=%s", to_email, subject)
        return True
    except Exception:
        logger.exception("SMTP send failed")
        return False


def _log_email(*, to_email: str, subject: str, text_body: str, html_body: Optional[str]) -> None:
    print("=== TAPCANVAS EMAIL (log mode) ===")
    print("To:", to_email)
    print("Subject:", subject)
    print(text_body)
    if html_body:
        print("--- HTML ---")
        print(html_body)
    print("=== /TAPCANVAS EMAIL ===")


def send_email(
    config: AuthConfig,
    *,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str] = None,
) -> bool:
    """
    Unified email send. Returns True on success, False on delivery failure.

    Provider selection (EMAIL_PROVIDER):
      - resend -> Resend API
      - smtp   -> SMTP_* settings
      - log    -> print to stdout

    Delivery failures never raise; missing credentials raise
    ConfigurationError in prod only.
    """
    to_email = (to_email or "").strip()
    if not to_email:
        return False

    provider = config.email_provider or "log"

    if provider == "resend":
        return _send_resend(config, to_email=to_email, subject=subject, text_body=text_body, html_body=html_body)

    if provider == "smtp":
        return _send_smtp(config, to_email=to_email, subject=subject, text_body=text_body, html_body=html_body)

    if provider != "log":
        logger.warning("Unknown EMAIL_PROVIDER=%s; using log mode.", provider)

    _log_email(to_email=to_email, subject=subject, text_body=text_body, html_body=html_body)
    return True
