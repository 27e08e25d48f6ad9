"""
Redis cache layer for the plan catalog and rate limiting.

Redis is optional at runtime: when it is unreachable every read is a miss,
every write is a no-op and counters raise so callers can fail open.
"""

import json
import logging
from functools import wraps
from typing import Any, Callable

import redis.asyncio as aioredis

from tenancy.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Redis-based cache manager.

    Handles:
    - Connection lifecycle
    - Serialization/deserialization
    - Key namespacing
    - TTL management
    """

    def __init__(self) -> None:
        self._client: aioredis.Redis | None = None

    async def init(self) -> None:
        """Initialize Redis connection pool. Leaves the cache disabled if Redis is down."""
        logger.info("Initializing Redis connection...")

        client = aioredis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
        )

        try:
            await client.ping()
        except (aioredis.RedisError, OSError) as e:
            logger.warning(f"Redis unavailable, cache disabled: {e}")
            await client.aclose()
            return

        self._client = client
        logger.info("Redis connection initialized")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def client(self) -> aioredis.Redis:
        """Get Redis client."""
        if not self._client:
            raise RuntimeError("Cache not initialized. Call init() first.")
        return self._client

    @property
    def available(self) -> bool:
        return self._client is not None

    def _build_key(self, namespace: str, key: str) -> str:
        """
        Build namespaced cache key.

        Format: tenancy:{namespace}:{key}
        Example: tenancy:plans:active
        """
        return f"tenancy:{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Any | None:
        """
        Get value from cache.

        Returns:
            Deserialized value or None if not found
        """
        if not self.available:
            return None

        cache_key = self._build_key(namespace, key)

        try:
            value = await self.client.get(cache_key)
            return None if value is None else json.loads(value)
        except aioredis.RedisError as e:
            logger.warning(f"Cache get error: {cache_key} - {e}")
            return None

    async def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """
        Set value in cache.

        Args:
            namespace: Cache namespace
            key: Cache key
            value: Value to cache (must be JSON-serializable)
            ttl: Time-to-live in seconds (None = use default)

        Returns:
            True if set successfully
        """
        if not self.available:
            return False

        cache_key = self._build_key(namespace, key)
        ttl = ttl or settings.redis_cache_ttl

        try:
            serialized = json.dumps(value, default=str)
            await self.client.set(cache_key, serialized, ex=ttl)
            return True
        except aioredis.RedisError as e:
            logger.warning(f"Cache set error: {cache_key} - {e}")
            return False

    async def invalidate_namespace(self, namespace: str) -> int:
        """
        Invalidate all keys in a namespace.

        Returns:
            Number of keys deleted
        """
        if not self.available:
            return 0

        pattern = self._build_key(namespace, "*")

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if keys:
                deleted = await self.client.delete(*keys)
                logger.info(f"Invalidated {deleted} keys in namespace: {namespace}")
                return deleted
            return 0
        except aioredis.RedisError as e:
            logger.warning(f"Cache invalidate error: {namespace} - {e}")
            return 0

    async def increment(
        self,
        namespace: str,
        key: str,
        ttl: int | None = None,
    ) -> int:
        """
        Increment a counter in cache.

        Used for rate limiting. Creates key if it doesn't exist.

        Returns:
            New counter value
        """
        cache_key = self._build_key(namespace, key)

        pipe = self.client.pipeline()
        pipe.incr(cache_key)
        if ttl:
            pipe.expire(cache_key, ttl, nx=True)
        results = await pipe.execute()
        return results[0]

    async def get_ttl(self, namespace: str, key: str) -> int:
        """Get remaining TTL for a key in seconds."""
        cache_key = self._build_key(namespace, key)

        try:
            return await self.client.ttl(cache_key)
        except aioredis.RedisError as e:
            logger.warning(f"Cache TTL error: {cache_key} - {e}")
            return -1


# Global instance
cache_manager = CacheManager()


def cached(
    namespace: str,
    ttl: int = 300,
    key_builder: Callable | None = None,
):
    """
    Decorator for caching async function results.

    Usage:
        @cached(namespace="plans", ttl=60, key_builder=lambda db: "active")
        async def list_active_plans(db) -> list[dict]:
            ...

    Args:
        namespace: Cache namespace
        ttl: Time-to-live in seconds
        key_builder: Function building the cache key from the call arguments
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            if key_builder:
                cache_key = key_builder(*args, **kwargs)
            else:
                key_parts = [func.__name__]
                key_parts.extend(str(a) for a in args)
                key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
                cache_key = ":".join(key_parts)

            cached_value = await cache_manager.get(namespace, cache_key)

            if cached_value is not None:
                logger.debug(f"Cache hit: {namespace}:{cache_key}")
                return cached_value

            logger.debug(f"Cache miss: {namespace}:{cache_key}")
            result = await func(*args, **kwargs)

            if result is not None:
                await cache_manager.set(namespace, cache_key, result, ttl=ttl)

            return result

        return wrapper
    return decorator
