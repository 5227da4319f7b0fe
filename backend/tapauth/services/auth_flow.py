# backend/tapauth/services/auth_flow.py
"""
Email login / registration and guest login.

Email flow:

    EMAIL_ENTERED -> CODE_SENT -> CODE_VERIFIED
        existing user: -> SESSION_ISSUED
        new user:      -> INVITATION_VALIDATED -> USER_CREATED
                       -> INVITATION_REDEEMED -> SESSION_ISSUED

A missing or bad invitation after CODE_VERIFIED is terminal; the
verification code stays consumed and the user restarts from EMAIL_ENTERED.

Guest flow: GUEST_REQUESTED -> SESSION_ISSUED.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tapauth.core.config import AuthConfig
from tapauth.core.errors import AlreadyUsedError, ValidationError
from tapauth.core.security import REGISTERED_SESSION_TTL, SessionTokenIssuer
from tapauth.models import User
from tapauth.schemas import AuthResult, SessionClaims
from tapauth.services.admin_policy import AdminPolicy
from tapauth.services.guest import GuestSessionService
from tapauth.services.invitations import InvitationCodeService
from tapauth.services.users import UserDirectory, normalize_email
from tapauth.services.verification import VerificationCodeService

logger = logging.getLogger("tapauth.auth")


class LoginStep(str, Enum):
    EMAIL_ENTERED = "EmailEntered"
    CODE_SENT = "CodeSent"
    CODE_VERIFIED = "CodeVerified"
    INVITATION_VALIDATED = "InvitationValidated"
    USER_CREATED = "UserCreated"
    INVITATION_REDEEMED = "InvitationRedeemed"
    SESSION_ISSUED = "SessionIssued"
    GUEST_REQUESTED = "GuestRequested"


@dataclass
class EmailLoginOutcome:
    auth: AuthResult
    created_user: bool
    steps: List[LoginStep] = field(default_factory=list)


def claims_for_user(user: User) -> SessionClaims:
    return SessionClaims(
        sub=user.id,
        login=user.login,
        name=user.name,
        avatar_url=user.avatar_url,
        email=user.email,
        role=user.role or None,
        guest=False,
    )


class AuthOrchestrator:
    def __init__(self, db: Session, config: AuthConfig):
        self.db = db
        self.config = config
        self.policy = AdminPolicy.from_config(config)
        self.users = UserDirectory(db)
        self.verification = VerificationCodeService(db, config)
        self.invitations = InvitationCodeService(db, config, policy=self.policy, users=self.users)
        self.guests = GuestSessionService(config)
        self.issuer = SessionTokenIssuer(config)

    def send_code(self, email: str) -> None:
        self.verification.send_code(email)

    def login_with_email(
        self,
        email: str,
        code: str,
        invitation_code: Optional[str] = None,
    ) -> EmailLoginOutcome:
        email_norm = normalize_email(email)
        steps = [LoginStep.EMAIL_ENTERED, LoginStep.CODE_SENT]

        verified = self.verification.verify_and_consume(email_norm, code)
        steps.append(LoginStep.CODE_VERIFIED)

        existing = None if verified.fresh else self.users.find_by_email(email_norm)
        if existing is not None:
            self.users.touch_login(existing.id)
            self.db.commit()

            token = self.issuer.issue(claims_for_user(existing), REGISTERED_SESSION_TTL)
            steps.append(LoginStep.SESSION_ISSUED)
            logger.info("Email login user_id=%s", existing.id)
            return EmailLoginOutcome(
                auth=AuthResult(token=token, user=claims_for_user(existing)),
                created_user=False,
                steps=steps,
            )

        invite = (invitation_code or "").strip()
        if not invite:
            raise ValidationError("首次注册需要邀请码")

        invitation = self.invitations.validate(invite)
        steps.append(LoginStep.INVITATION_VALIDATED)

        try:
            user = self.users.create(email_norm, is_admin=self.policy.is_admin_email(email_norm))
        except IntegrityError:
            # Another registration for this email committed first
            logger.info("Registration lost email race invitation_id=%s", invitation.id)
            self.db.rollback()
            raise AlreadyUsedError("该邮箱已注册，请重新登录")
        steps.append(LoginStep.USER_CREATED)

        # User row and invitation claim commit together; losing the claim
        # race rolls the new user back.
        if not self.invitations.claim(invitation.id, user.id):
            self.db.rollback()
            logger.info("Invitation lost redemption race id=%s", invitation.id)
            raise AlreadyUsedError("邀请码已被使用")
        self.db.commit()
        steps.append(LoginStep.INVITATION_REDEEMED)
        logger.info("Invitation redeemed id=%s used_by=%s", invitation.id, user.id)

        claims = claims_for_user(user)
        token = self.issuer.issue(claims, REGISTERED_SESSION_TTL)
        steps.append(LoginStep.SESSION_ISSUED)
        logger.info("Registration complete user_id=%s", user.id)

        return EmailLoginOutcome(auth=AuthResult(token=token, user=claims), created_user=True, steps=steps)

    def login_as_guest(self, nickname: Optional[str] = None) -> AuthResult:
        return self.guests.create(nickname)
