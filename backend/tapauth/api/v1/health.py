# backend/tapauth/api/v1/health.py

"""
Health endpoints.

- /api/v1/health       -> lightweight liveness (no DB)
- /api/v1/health/db    -> DB readiness probe (small SELECT 1)
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from tapauth.db.session import get_db

logger = logging.getLogger("tapauth.health")

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Liveness probe")
def health():
    return {
        "status": "ok",
        "service": "tapauth",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/db", summary="Database readiness probe")
def health_db(db: Session = Depends(get_db)):
    """
    Returns 200 when the DB answers `SELECT 1`, 503 when not.
    """
    start = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("DB health check failed")
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "db": "down", "message": str(exc)},
        )

    return {
        "status": "ok",
        "db": "up",
        "latency_ms": int((time.perf_counter() - start) * 1000),
    }
