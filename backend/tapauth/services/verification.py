# backend/tapauth/services/verification.py
from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from tapauth.core import timeutil
from tapauth.core.config import AuthConfig
from tapauth.core.email import send_email
from tapauth.core.errors import (
    ExpiredError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from tapauth.models import EmailVerificationCode
from tapauth.services.users import UserDirectory, normalize_email

logger = logging.getLogger("tapauth.verification")

CODE_LENGTH = 6
CODE_ALPHABET = "0123456789"
CODE_EXPIRE_MINUTES = 5

EMAIL_SUBJECT = "TapCanvas 登录验证码"


def generate_verification_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def render_verification_email(code: str) -> tuple[str, str]:
    """(text_body, html_body) for the login code email."""
    text = (
        f"您的 TapCanvas 验证码是：{code}\n\n"
        f"验证码有效期为 {CODE_EXPIRE_MINUTES} 分钟，请尽快使用。\n"
        "此邮件由 TapCanvas 自动发送，请勿回复。"
    )
    html = f"""
<div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 480px; margin: 0 auto; padding: 32px;">
  <h2 style="color: #09090b; margin-bottom: 24px;">TapCanvas 验证码</h2>
  <p style="color: #52525b; margin-bottom: 16px;">您的验证码是：</p>
  <div style="background: #f4f4f5; border-radius: 8px; padding: 16px 24px; text-align: center; margin-bottom: 24px;">
    <span style="font-size: 32px; font-weight: bold; letter-spacing: 8px; color: #09090b;">{code}</span>
  </div>
  <p style="color: #71717a; font-size: 14px;">验证码有效期为 {CODE_EXPIRE_MINUTES} 分钟，请尽快使用。</p>
  <p style="color: #a1a1aa; font-size: 12px; margin-top: 32px;">此邮件由 TapCanvas 自动发送，请勿回复。</p>
</div>
"""
    return text, html


def _validated_email(email: str) -> str:
    email_norm = normalize_email(email)
    if not email_norm or "@" not in email_norm:
        raise ValidationError("请输入有效的邮箱地址")
    return email_norm


@dataclass(frozen=True)
class VerificationResult:
    # True when no user with this email exists yet (registration branch)
    fresh: bool


class VerificationCodeService:
    """
    Issues and redeems one-time 6-digit email codes.
    """

    def __init__(self, db: Session, config: AuthConfig):
        self.db = db
        self.config = config

    def send_code(self, email: str) -> None:
        email_norm = _validated_email(email)
        code = generate_verification_code()
        now = timeutil.utcnow()

        record = EmailVerificationCode(
            id=str(uuid.uuid4()),
            email=email_norm,
            code=code,
            expires_at=now + timedelta(minutes=CODE_EXPIRE_MINUTES),
            verified=False,
            created_at=now,
        )
        self.db.add(record)
        self.db.commit()

        # The stored code stays valid even when delivery fails
        text_body, html_body = render_verification_email(code)
        delivered = send_email(
            self.config,
            to_email=email_norm,
            subject=EMAIL_SUBJECT,
            text_body=text_body,
            html_body=html_body,
        )
        if not delivered:
            logger.error("Verification email delivery failed record_id=%s", record.id)
            raise TransportError("发送邮件失败")

        logger.info("Verification code sent record_id=%s", record.id)

    def _latest_unverified(self, email_norm: str) -> EmailVerificationCode | None:
        return (
            self.db.query(EmailVerificationCode)
            .filter(
                EmailVerificationCode.email == email_norm,
                EmailVerificationCode.verified == False,  # noqa: E712
            )
            .order_by(EmailVerificationCode.created_at.desc())
            .first()
        )

    def verify_and_consume(self, email: str, code: str) -> VerificationResult:
        email_norm = normalize_email(email)
        record = self._latest_unverified(email_norm)
        if record is None:
            raise NotFoundError("验证码不存在或已过期，请重新获取")

        if record.code != (code or ""):
            raise ValidationError("验证码错误")

        expires_at = timeutil.as_aware_utc(record.expires_at)
        if expires_at is None or timeutil.utcnow() > expires_at:
            raise ExpiredError("验证码已过期，请重新获取")

        # Compare-and-set: only one concurrent caller can flip verified
        result = self.db.execute(
            update(EmailVerificationCode)
            .where(
                EmailVerificationCode.id == record.id,
                EmailVerificationCode.verified == False,  # noqa: E712
            )
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise NotFoundError("验证码不存在或已过期，请重新获取")

        self.db.commit()
        logger.info("Verification code consumed record_id=%s", record.id)

        fresh = not UserDirectory(self.db).exists(email_norm)
        return VerificationResult(fresh=fresh)
