"""Redis connection pool and best-effort JSON cache helpers.

The pool is created in the app lifespan. Everything that reads or writes
the cache must tolerate Redis being down: get_cached() returns None and
set_cached() logs and moves on, so callers fall through to the database.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from storefront.config import settings

logger = structlog.get_logger()

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def get_cached(key: str) -> Any | None:
    """Return the decoded value stored under key, or None on miss/failure."""
    try:
        raw = await get_redis().get(key)
    except (RuntimeError, RedisError, OSError) as e:
        logger.warning("cache.read_failed", key=key, error=str(e))
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("cache.malformed_entry", key=key)
        return None


async def set_cached(key: str, value: Any, ttl_seconds: int) -> None:
    """Store value as JSON with an expiry. Failures are logged, not raised."""
    try:
        await get_redis().set(key, json.dumps(value, default=str), ex=ttl_seconds)
    except (RuntimeError, RedisError, OSError) as e:
        logger.warning("cache.write_failed", key=key, error=str(e))


async def invalidate(*keys: str) -> None:
    """Drop cache entries. Failures are logged, not raised."""
    if not keys:
        return
    try:
        await get_redis().delete(*keys)
    except (RuntimeError, RedisError, OSError) as e:
        logger.warning("cache.invalidate_failed", keys=list(keys), error=str(e))
