# ==== HEALTH CHECK ROUTES ==== #

"""
Liveness and readiness checks.

Readiness reports the cache circuit breaker state; an open breaker means the
service is running degraded (every read goes to the store), not that it is
unavailable.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter

from umkm_licensing.resilience.circuit_breaker import get_circuit_breaker_stats
from umkm_licensing.settings import settings


router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Liveness endpoint for container orchestration."""
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/readyz")
async def readiness_check() -> Dict[str, Any]:
    """Readiness check with circuit breaker states."""
    breakers = get_circuit_breaker_stats()
    degraded = any(stats["state"] != "closed" for stats in breakers.values())
    return {
        "status": "degraded" if degraded else "ready",
        "service": settings.SERVICE_NAME,
        "environment": settings.APP_ENV,
        "circuit_breakers": breakers,
    }
