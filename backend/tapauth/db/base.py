# backend/tapauth/db/base.py

"""
Single source of truth for the SQLAlchemy Declarative Base.

This file must NOT import tapauth.models (circular import via
tapauth.models -> tapauth.db.base).
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass
