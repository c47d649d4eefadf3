"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.utils.cache import get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no Redis/store API check)."""
    return {
        "status": "ok",
        "service": "openshop-wizard",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: Redis and the remote store API must both answer.

    Returns 503 if either dependency is down.
    """
    checks = {
        "service": "ok",
        "redis": "unknown",
        "store_api": "unknown",
    }
    overall_healthy = True

    try:
        redis_client = await get_redis()
        await redis_client.ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {str(e)[:100]}"
        overall_healthy = False

    async with StoreApiClient(timeout=5.0) as client:
        reachable = await client.ping()
    if reachable:
        checks["store_api"] = "ok"
    else:
        checks["store_api"] = "error: unreachable"
        overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "openshop-wizard",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
