"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.utils.store import get_redis

router = APIRouter(tags=["health"])

SERVICE_NAME = "Tenant Onboarding Console"


@router.get("/health")
async def health_check():
    """Lightweight liveness check (no Redis or tenant API call)."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: the wizard store (Redis) must answer a PING.

    Returns 503 when Redis is unreachable.
    """
    checks = {"service": "ok", "redis": "unknown"}
    overall_healthy = True

    try:
        client = await get_redis()
        await client.ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {str(e)[:100]}"
        overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": SERVICE_NAME,
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
