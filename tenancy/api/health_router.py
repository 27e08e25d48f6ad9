"""
Health check endpoints for monitoring and orchestration.

Provides:
- Liveness check: Is the app running?
- Readiness check: Can the app serve traffic?
- Detailed health check: Status of all dependencies
"""

import time
from typing import Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tenancy.config import settings
from tenancy.core.cache import cache_manager
from tenancy.core.database import db_manager
from tenancy.features.identity.registry import get_identity_gateway

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


async def _check_database() -> dict[str, Any]:
    start = time.perf_counter()
    try:
        async with db_manager.session() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError, RuntimeError) as e:
        logger.warning("health_database_unhealthy", error=str(e))
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
    }


async def _check_redis() -> dict[str, Any]:
    if not cache_manager.available:
        return {"status": "unhealthy", "error": "Redis not connected"}

    start = time.perf_counter()
    try:
        await cache_manager.client.ping()
    except (RedisError, OSError) as e:
        logger.warning("health_redis_unhealthy", error=str(e))
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
    }


@router.get("/health/live")
async def liveness() -> dict:
    """
    Liveness check.

    Returns:
        200: Application is running
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness() -> JSONResponse:
    """
    Readiness check.

    Checks:
    - Database connectivity
    - Redis connectivity

    Returns:
        200: Ready to serve traffic
        503: Not ready (dependencies unavailable)
    """
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    is_ready = all(check["status"] == "healthy" for check in checks.values())

    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if is_ready else "not_ready",
            "checks": checks,
        },
    )


@router.get("/health")
async def health() -> dict:
    """
    Detailed health check with dependency status.

    Redis only degrades the service: caching and rate limiting fail open
    without it.
    """
    checks: dict[str, Any] = {
        "database": await _check_database(),
        "redis": await _check_redis(),
        "identity_provider": {"status": "configured", "provider": get_identity_gateway().name},
    }

    overall_status = "healthy"
    if checks["database"]["status"] != "healthy":
        overall_status = "unhealthy"
    elif checks["redis"]["status"] != "healthy":
        overall_status = "degraded"

    return {
        "status": overall_status,
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks,
    }
