# backend/tapauth/api/v1/auth.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError as PydanticValidationError

from tapauth.api.deps import get_invitation_service, get_orchestrator
from tapauth.core.config import AuthConfig, get_auth_config
from tapauth.core.cookies import attach_auth_cookie
from tapauth.core.redirects import (
    append_auth_params,
    build_login_redirect_url,
    normalize_redirect_target,
)
from tapauth.core.security import ResolvedAuth, get_optional_auth, require_auth
from tapauth.schemas import (
    AuthResult,
    GenerateInvitationRequest,
    GenerateInvitationResponse,
    GuestLoginRequest,
    InvitationListResponse,
    SendCodeRequest,
    SendCodeResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from tapauth.services.auth_flow import AuthOrchestrator
from tapauth.services.invitations import InvitationCodeService

logger = logging.getLogger("tapauth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _unauthorized(extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body: Dict[str, Any] = {"authenticated": False, "error": "Unauthorized"}
    if extra:
        body.update(extra)
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=body)


@router.get("/session")
def session(
    request: Request,
    redirect: Optional[str] = Query(default=None),
    redirect_uri: Optional[str] = Query(default=None),
    resolved: Optional[ResolvedAuth] = Depends(get_optional_auth),
    config: AuthConfig = Depends(get_auth_config),
):
    """
    Session check for the web client and for other origins that bounce
    through here to pick up a token.
    """
    requested = redirect or redirect_uri
    target = normalize_redirect_target(requested, config.login_url or str(request.url))

    if resolved is not None:
        if target:
            with_auth = append_auth_params(target, resolved.token, resolved.claims)
            if with_auth:
                return RedirectResponse(url=with_auth, status_code=status.HTTP_302_FOUND)
        return {
            "authenticated": True,
            "token": resolved.token,
            "user": resolved.claims.model_dump(by_alias=True),
        }

    login_redirect = build_login_redirect_url(config.login_url, target)
    if login_redirect and target:
        return RedirectResponse(url=login_redirect, status_code=status.HTTP_302_FOUND)
    if login_redirect:
        return _unauthorized({"loginUrl": login_redirect})
    return _unauthorized()


@router.post("/email/send-code", response_model=SendCodeResponse)
def send_code(
    payload: SendCodeRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SendCodeResponse:
    orchestrator.send_code(payload.email)
    return SendCodeResponse(message="验证码已发送")


@router.post("/email/verify", response_model=VerifyCodeResponse)
def verify_code(
    payload: VerifyCodeRequest,
    request: Request,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    config: AuthConfig = Depends(get_auth_config),
) -> VerifyCodeResponse:
    outcome = orchestrator.login_with_email(payload.email, payload.code, payload.invitation_code)
    attach_auth_cookie(
        response,
        outcome.auth.token,
        host_header=request.headers.get("host"),
        cookie_domain=config.cookie_domain,
    )
    return VerifyCodeResponse(token=outcome.auth.token, user=outcome.auth.user)


@router.post("/guest", response_model=AuthResult)
def guest_login(
    request: Request,
    response: Response,
    payload: Optional[GuestLoginRequest] = Body(default=None),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    config: AuthConfig = Depends(get_auth_config),
) -> AuthResult:
    result = orchestrator.login_as_guest(payload.nickname if payload else None)
    attach_auth_cookie(
        response,
        result.token,
        host_header=request.headers.get("host"),
        cookie_domain=config.cookie_domain,
        is_guest=True,
    )
    return result


@router.post("/invitation/generate", response_model=GenerateInvitationResponse)
def generate_invitation(
    body: Optional[Dict[str, Any]] = Body(default=None),
    resolved: ResolvedAuth = Depends(require_auth),
    invitations: InvitationCodeService = Depends(get_invitation_service),
) -> GenerateInvitationResponse:
    # A malformed body just means "no expiry"
    expires_in_days: Optional[int] = None
    if body:
        try:
            expires_in_days = GenerateInvitationRequest.model_validate(body).expires_in_days
        except PydanticValidationError:
            expires_in_days = None

    issued = invitations.issue(resolved.claims.sub, expires_in_days)
    return GenerateInvitationResponse(id=issued.id, code=issued.code)


@router.get("/invitation/list", response_model=InvitationListResponse)
def list_invitations(
    resolved: ResolvedAuth = Depends(require_auth),
    invitations: InvitationCodeService = Depends(get_invitation_service),
) -> InvitationListResponse:
    return InvitationListResponse(codes=invitations.list(resolved.claims.sub))
