"""
Fixed-window rate limiting backed by Redis counters.

Fails open: if Redis is unavailable requests are let through.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import HTTPException, Request, status

from tenancy.config import settings
from tenancy.core.cache import cache_manager

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for a rate limit rule."""

    requests: int     # Max requests
    window: int       # Time window in seconds
    key_prefix: str   # Key prefix for namespacing


# Predefined rate limit tiers
RATE_LIMITS = {
    "default": RateLimitConfig(requests=60, window=60, key_prefix="rl"),
    "signup": RateLimitConfig(requests=5, window=60, key_prefix="rl_signup"),
    "admin": RateLimitConfig(requests=30, window=60, key_prefix="rl_admin"),
    "otp": RateLimitConfig(requests=5, window=60, key_prefix="rl_otp"),
}


async def check_rate_limit(
    identifier: str,
    limit_type: str = "default",
) -> dict:
    """
    Check if identifier has exceeded rate limit.

    Args:
        identifier: Unique identifier (client ip, tenant id)
        limit_type: Rate limit tier to apply

    Returns:
        Dict with rate limit info

    Raises:
        HTTPException: 429 if rate limit exceeded
    """
    config = RATE_LIMITS.get(limit_type, RATE_LIMITS["default"])
    key = f"{identifier}:{limit_type}"

    if not settings.rate_limit_enabled or not cache_manager.available:
        return {"limit": config.requests, "remaining": config.requests, "reset": 0}

    try:
        current_count = await cache_manager.increment(
            namespace=config.key_prefix,
            key=key,
            ttl=config.window,
        )
        ttl = await cache_manager.get_ttl(config.key_prefix, key)
    except aioredis.RedisError as e:
        logger.error(f"Rate limit check error: {e}")
        return {"limit": config.requests, "remaining": config.requests, "reset": 0}

    if current_count > config.requests:
        logger.warning(
            f"Rate limit exceeded: {identifier} ({limit_type}) "
            f"{current_count}/{config.requests}"
        )

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate limit exceeded",
                "limit": config.requests,
                "window": config.window,
                "retry_after": ttl,
            },
            headers={
                "X-RateLimit-Limit": str(config.requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(ttl),
                "Retry-After": str(ttl),
            },
        )

    return {
        "limit": config.requests,
        "remaining": max(0, config.requests - current_count),
        "reset": ttl,
        "current": current_count,
    }


def rate_limit(limit_type: str = "default"):
    """
    Rate limiting dependency factory, keyed by client address.

    Usage:
        @router.post("/signup", dependencies=[Depends(rate_limit("signup"))])
        async def signup(...):
            ...
    """
    async def dependency(request: Request) -> dict:
        identifier = request.client.host if request.client else "unknown"
        return await check_rate_limit(identifier, limit_type)

    return dependency
