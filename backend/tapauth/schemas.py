# backend/tapauth/schemas.py
"""
Pydantic shapes shared by the services and the HTTP layer.

JSON keys follow the token/payload format used by the web client
(`avatarUrl`, `invitationCode`, `expiresInDays`), attribute names stay
snake_case in Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionClaims(BaseModel):
    """
    The single identity shape for registered users and guests.
    """

    model_config = ConfigDict(populate_by_name=True)

    sub: str
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")
    email: Optional[str] = None
    role: Optional[str] = None
    guest: bool = False


class AuthResult(BaseModel):
    token: str
    user: SessionClaims


# ---------- Requests ----------

class SendCodeRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=6, max_length=6)
    invitation_code: Optional[str] = Field(default=None, alias="invitationCode")


class GuestLoginRequest(BaseModel):
    nickname: Optional[str] = None


class GenerateInvitationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expires_in_days: Optional[int] = Field(default=None, alias="expiresInDays", gt=0)


# ---------- Responses ----------

class SendCodeResponse(BaseModel):
    success: bool = True
    message: str


class VerifyCodeResponse(AuthResult):
    success: bool = True


class GenerateInvitationResponse(BaseModel):
    success: bool = True
    id: str
    code: str


class InvitationCodeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    code: str
    is_used: bool = Field(alias="isUsed")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    created_at: datetime = Field(alias="createdAt")
    used_at: Optional[datetime] = Field(default=None, alias="usedAt")
    used_by_email: Optional[str] = Field(default=None, alias="usedByEmail")


class InvitationListResponse(BaseModel):
    success: bool = True
    codes: List[InvitationCodeOut]
