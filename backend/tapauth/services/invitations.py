# backend/tapauth/services/invitations.py
from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from tapauth.core import timeutil
from tapauth.core.config import AuthConfig
from tapauth.core.errors import (
    AlreadyUsedError,
    AuthorizationError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from tapauth.models import InvitationCode, User
from tapauth.schemas import InvitationCodeOut
from tapauth.services.admin_policy import AdminPolicy
from tapauth.services.users import UserDirectory

logger = logging.getLogger("tapauth.invitations")

INVITE_CODE_LENGTH = 32
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
INVITE_LIST_LIMIT = 100
ISSUE_MAX_ATTEMPTS = 3


def generate_invitation_code() -> str:
    # Opaque one-time code, uniform over 62 symbols
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def _coerce_expiry_days(v) -> Optional[int]:
    """Positive integer -> days; anything else -> non-expiring."""
    if isinstance(v, bool) or not isinstance(v, int):
        return None
    return v if v > 0 else None


@dataclass(frozen=True)
class IssuedInvitation:
    id: str
    code: str


class InvitationCodeService:
    """
    Admin-only issuance and single-use redemption of registration codes.
    """

    def __init__(
        self,
        db: Session,
        config: AuthConfig,
        *,
        policy: Optional[AdminPolicy] = None,
        users: Optional[UserDirectory] = None,
    ):
        self.db = db
        self.config = config
        self.policy = policy or AdminPolicy.from_config(config)
        self.users = users or UserDirectory(db)

    def _require_admin(self, admin_user_id: str, message: str) -> User:
        # Unknown user, allowlist miss and role miss all look the same
        user = self.users.find_by_id(admin_user_id)
        if user is None or not self.policy.is_admin(user):
            logger.info("Admin check failed user_id=%s", admin_user_id)
            raise AuthorizationError(message)
        return user

    def issue(self, admin_user_id: str, expires_in_days: Optional[int] = None) -> IssuedInvitation:
        self._require_admin(admin_user_id, "无权限生成邀请码")

        now = timeutil.utcnow()
        days = _coerce_expiry_days(expires_in_days)
        expires_at = now + timedelta(days=days) if days else None

        last_error: Optional[IntegrityError] = None
        for attempt in range(1, ISSUE_MAX_ATTEMPTS + 1):
            invitation = InvitationCode(
                id=str(uuid.uuid4()),
                code=generate_invitation_code(),
                created_by=str(admin_user_id),
                is_used=False,
                expires_at=expires_at,
                created_at=now,
            )
            self.db.add(invitation)
            try:
                self.db.commit()
            except IntegrityError as exc:
                # Code collision: roll back and draw a new one
                self.db.rollback()
                last_error = exc
                logger.warning("Invitation code collision attempt=%s", attempt)
                continue

            logger.info(
                "Invitation issued id=%s created_by=%s expires_at=%s",
                invitation.id,
                admin_user_id,
                expires_at.isoformat() if expires_at else None,
            )
            return IssuedInvitation(id=invitation.id, code=invitation.code)

        logger.error("Invitation issue gave up after %s collisions", ISSUE_MAX_ATTEMPTS)
        raise last_error

    def validate(self, code: str) -> InvitationCode:
        """
        Read-only checks: exists, unused, not expired.
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("首次注册需要邀请码")

        invitation = self.db.query(InvitationCode).filter(InvitationCode.code == code).first()
        if invitation is None:
            raise NotFoundError("邀请码无效")

        if invitation.is_used:
            raise AlreadyUsedError("邀请码已被使用")

        expires_at = timeutil.as_aware_utc(invitation.expires_at)
        if expires_at is not None and expires_at < timeutil.utcnow():
            raise ExpiredError("邀请码已过期")

        return invitation

    def claim(self, invitation_id: str, redeeming_user_id: str) -> bool:
        """
        Conditional single-row update. True only for the one caller that flips
        is_used; everyone else sees zero affected rows.
        """
        result = self.db.execute(
            update(InvitationCode)
            .where(
                InvitationCode.id == invitation_id,
                InvitationCode.is_used == False,  # noqa: E712
            )
            .values(is_used=True, used_by=str(redeeming_user_id), used_at=timeutil.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def redeem(self, code: str, redeeming_user_id: str, *, commit: bool = True) -> None:
        invitation = self.validate(code)

        if not self.claim(invitation.id, redeeming_user_id):
            self.db.rollback()
            raise AlreadyUsedError("邀请码已被使用")

        if commit:
            self.db.commit()
        logger.info("Invitation redeemed id=%s used_by=%s", invitation.id, redeeming_user_id)

    def list(self, admin_user_id: str) -> List[InvitationCodeOut]:
        self._require_admin(admin_user_id, "无权限查看邀请码")

        used_by_user = aliased(User)
        rows = (
            self.db.query(InvitationCode, used_by_user.email)
            .outerjoin(used_by_user, InvitationCode.used_by == used_by_user.id)
            .filter(InvitationCode.created_by == str(admin_user_id))
            .order_by(InvitationCode.created_at.desc())
            .limit(INVITE_LIST_LIMIT)
            .all()
        )

        return [
            InvitationCodeOut(
                id=inv.id,
                code=inv.code,
                is_used=bool(inv.is_used),
                expires_at=timeutil.as_aware_utc(inv.expires_at),
                created_at=timeutil.as_aware_utc(inv.created_at),
                used_at=timeutil.as_aware_utc(inv.used_at),
                used_by_email=used_by_email,
            )
            for inv, used_by_email in rows
        ]
