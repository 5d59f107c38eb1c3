"""Rate limiting dependencies using a Redis sliding window counter.

Limits are enforced per user (``X-User-Id``), falling back to the client IP
for anonymous calls. When Redis is unavailable an in-memory token bucket is
used instead.
"""

import logging
import threading
import time
from dataclasses import dataclass, field

from fastapi import HTTPException, Request, status

from app.core.redis import get_redis

logger = logging.getLogger(__name__)

# Default rate limits (requests per window)
DEFAULT_RATE_LIMIT = 120
DEFAULT_WINDOW_SECONDS = 60

# Machine and queue mutations
WRITE_RATE_LIMIT = 30
WRITE_WINDOW_SECONDS = 60


@dataclass
class _TokenBucket:
    """Simple token bucket for in-memory rate limiting."""

    tokens: float
    last_refill: float
    limit: int
    window: int

    def consume(self, now: float) -> tuple[bool, int]:
        """Try to consume a token. Returns (allowed, retry_after_seconds)."""
        elapsed = now - self.last_refill
        refill_rate = self.limit / self.window
        self.tokens = min(self.limit, self.tokens + elapsed * refill_rate)
        self.last_refill = now

        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True, 0

        deficit = 1.0 - self.tokens
        retry_after = max(1, int(deficit / refill_rate))
        return False, retry_after


@dataclass
class _InMemoryLimiter:
    """Thread-safe in-memory rate limiter using token buckets per client."""

    _buckets: dict[str, _TokenBucket] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Check rate limit. Returns (allowed, retry_after_seconds)."""
        now = time.time()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.limit != limit or bucket.window != window:
                bucket = _TokenBucket(
                    tokens=float(limit), last_refill=now, limit=limit, window=window
                )
                self._buckets[key] = bucket
            return bucket.consume(now)


_memory_limiter = _InMemoryLimiter()


def _client_key(request: Request) -> str:
    """Rate-limit key: the forwarded user id, else the client IP."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return "ip:" + forwarded.split(",")[0].strip()
    client = request.client
    return "ip:" + (client.host if client else "unknown")


def _too_many(retry_after: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Try again in {retry_after}s.",
        headers={"Retry-After": str(retry_after)},
    )


async def _check_rate_limit(
    request: Request,
    limit: int,
    window: int,
    prefix: str,
) -> None:
    """Check rate limit using Redis sliding window.

    Falls back to an in-memory token bucket when Redis is unavailable.
    Raises HTTP 429 if the limit is exceeded.
    """
    key = f"ratelimit:{prefix}:{_client_key(request)}"
    try:
        redis = get_redis()
    except RuntimeError:
        allowed, retry_after = _memory_limiter.check(key, limit, window)
        if not allowed:
            raise _too_many(retry_after)
        return

    now = time.time()
    window_start = now - window

    pipe = redis.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zadd(key, {str(now): now})
    pipe.zcard(key)
    # Oldest entry gives an accurate retry_after
    pipe.zrange(key, 0, 0, withscores=True)
    pipe.expire(key, window)
    results = await pipe.execute()

    request_count = results[2]

    if request_count > limit:
        oldest_entries = results[3]
        if oldest_entries:
            oldest_timestamp = oldest_entries[0][1]
            retry_after = max(1, int(oldest_timestamp + window - now))
        else:
            retry_after = window
        raise _too_many(retry_after)


async def rate_limit_default(request: Request) -> None:
    """Standard rate limit for read and workflow endpoints."""
    await _check_rate_limit(
        request,
        limit=DEFAULT_RATE_LIMIT,
        window=DEFAULT_WINDOW_SECONDS,
        prefix="default",
    )


async def rate_limit_write(request: Request) -> None:
    """Tighter limit for machine, run and queue mutations."""
    await _check_rate_limit(
        request,
        limit=WRITE_RATE_LIMIT,
        window=WRITE_WINDOW_SECONDS,
        prefix="write",
    )
