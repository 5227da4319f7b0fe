# backend/tapauth/core/timeutil.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    # Always return timezone-aware UTC
    return datetime.now(timezone.utc)


def as_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize datetimes for safe comparison:
    - If dt is naive (SQLite returns naive values), assume UTC.
    - If dt is aware, convert to UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
