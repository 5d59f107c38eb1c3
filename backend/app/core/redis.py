"""Async Redis connection manager using app.state instead of global mutable state."""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

_fallback_client: aioredis.Redis | None = None


async def init_redis(app_state: object) -> aioredis.Redis | None:
    """Connect to Redis and store the client on app.state.

    Redis only backs rate limiting, so an unreachable server is logged and
    the in-memory limiter takes over instead of failing startup.
    """
    global _fallback_client
    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis unavailable at %s: %s", settings.REDIS_URL, exc)
        await client.aclose()
        app_state.redis = None  # type: ignore[attr-defined]
        return None
    app_state.redis = client  # type: ignore[attr-defined]
    _fallback_client = client
    return client


async def close_redis(app_state: object) -> None:
    """Close the Redis connection stored on app.state."""
    global _fallback_client
    client: aioredis.Redis | None = getattr(app_state, "redis", None)
    if client is not None:
        await client.aclose()
        app_state.redis = None  # type: ignore[attr-defined]
    _fallback_client = None


def get_redis() -> aioredis.Redis:
    """Accessor for non-request contexts (the rate limiter)."""
    if _fallback_client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _fallback_client
