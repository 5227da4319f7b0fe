# backend/tapauth/models.py
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    ForeignKey,
    Index,
    DateTime,
    Boolean,
)
from sqlalchemy.sql import text
from tapauth.db.base import Base

# Cross-DB timestamp default (SQLite + Postgres)
DB_NOW = text("CURRENT_TIMESTAMP")


class User(Base):
    """
    Registered user. Guests are never stored here; they only exist inside
    their signed session token.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    login = Column(String(64), nullable=False)
    name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    email = Column(String(255), unique=True, nullable=True, index=True)

    # "admin" or NULL
    role = Column(String(32), nullable=True)
    guest = Column(Boolean, nullable=False, default=False, server_default=sa.false())

    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)


class EmailVerificationCode(Base):
    """
    One-time 6-digit email code. Rows are never deleted; `verified` flips
    to true exactly once.
    """
    __tablename__ = "email_verification_codes"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified = Column(Boolean, nullable=False, default=False, server_default=sa.false())
    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)

    __table_args__ = (
        # "latest unverified code for this email"
        Index("ix_email_codes_email_verified_created", "email", "verified", "created_at"),
    )


class InvitationCode(Base):
    """
    Admin-issued single-use registration code.
    """
    __tablename__ = "invitation_codes"

    id = Column(String(36), primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)

    is_used = Column(Boolean, nullable=False, default=False, server_default=sa.false())
    used_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)

    # NULL = never expires
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)

    __table_args__ = (
        Index("ix_invitation_codes_created_by_created", "created_by", "created_at"),
    )
