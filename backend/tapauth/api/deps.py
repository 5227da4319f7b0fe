# backend/tapauth/api/deps.py
"""
Shared API dependencies.

Every request gets its own DB session and its own immutable AuthConfig;
services are built from those two and nothing else.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from tapauth.core.config import AuthConfig, get_auth_config
from tapauth.db.session import get_db
from tapauth.services.auth_flow import AuthOrchestrator
from tapauth.services.invitations import InvitationCodeService


def get_orchestrator(
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config),
) -> AuthOrchestrator:
    return AuthOrchestrator(db, config)


def get_invitation_service(
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config),
) -> InvitationCodeService:
    return InvitationCodeService(db, config)
