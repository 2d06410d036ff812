"""
Health Check Endpoints

Liveness and readiness checks for container orchestration.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from ....core.database.adapter import DatabaseAdapter
from ..dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check.

    Returns 200 if the service is running.
    """
    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": os.getenv("APP_VERSION", "1.0.0")
    }


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """Returns 200 if the process is alive."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    db: DatabaseAdapter = Depends(get_db)
) -> Dict[str, Any]:
    """
    Readiness check.

    Returns 503 until the database answers.
    """
    checks = {}
    all_healthy = True

    try:
        await db.fetchval("SELECT 1 AS ok")
        checks["database"] = "healthy"
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        checks["database"] = f"unhealthy: {str(e)[:100]}"
        all_healthy = False

    if not all_healthy:
        response.status_code = 503

    return {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": _now()
    }
