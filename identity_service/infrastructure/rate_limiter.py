"""Per-client request limiting for the identify endpoint.

Requests are counted over a sliding window per client IP, in Redis when it is
connected and in process memory otherwise.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException, Request, status
from redis.exceptions import RedisError

from identity_service.infrastructure.redis import redis_client
from identity_service.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Allowed requests per window for one endpoint."""

    requests: int
    window_seconds: int
    key_prefix: str = "rl"


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of counting one request."""

    limited: bool
    remaining: int
    reset_seconds: int


def get_rate_limits() -> dict[str, RateLimitConfig]:
    """Limits per endpoint, read from settings on each call."""
    return {
        "identify": RateLimitConfig(
            requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            key_prefix="rl:identify",
        ),
    }


class InMemoryRateLimiter:
    """Sliding window kept in process memory, one deque of timestamps per key."""

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def reset(self) -> None:
        """Forget every recorded request."""
        self._hits.clear()

    async def hit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Record a request for ``key`` unless it is over the limit."""
        async with self._lock:
            now = time.time()
            hits = self._hits[f"{config.key_prefix}:{key}"]
            while hits and hits[0] <= now - config.window_seconds:
                hits.popleft()

            if len(hits) >= config.requests:
                reset_seconds = int(hits[0] + config.window_seconds - now) if hits else config.window_seconds
                return RateLimitResult(True, 0, max(1, reset_seconds))

            hits.append(now)
            return RateLimitResult(False, config.requests - len(hits), config.window_seconds)


class RedisRateLimiter:
    """Sliding window kept in a Redis sorted set, shared by every instance."""

    async def hit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Record a request for ``key`` unless it is over the limit.

        Redis errors let the request through.
        """
        client = redis_client.client
        if client is None:
            return RateLimitResult(False, config.requests, config.window_seconds)

        redis_key = f"{config.key_prefix}:{key}"
        now = time.time()
        try:
            pipe = client.pipeline()
            pipe.zremrangebyscore(redis_key, 0, now - config.window_seconds)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {str(now): now})
            pipe.expire(redis_key, config.window_seconds + 1)
            _, count, _, _ = await pipe.execute()

            if count >= config.requests:
                oldest = await client.zrange(redis_key, 0, 0, withscores=True)
                reset_seconds = (
                    int(oldest[0][1] + config.window_seconds - now) if oldest else config.window_seconds
                )
                return RateLimitResult(True, 0, max(1, reset_seconds))
            return RateLimitResult(False, config.requests - count - 1, config.window_seconds)
        except RedisError as e:
            logger.warning(f"Redis rate limit check failed for {redis_key}: {e}")
            return RateLimitResult(False, config.requests, config.window_seconds)


in_memory_limiter = InMemoryRateLimiter()
redis_limiter = RedisRateLimiter()


async def check_rate_limit(key: str, config: RateLimitConfig) -> RateLimitResult:
    """Count a request against the active backend."""
    if settings.redis_enabled and redis_client.client is not None:
        return await redis_limiter.hit(key, config)
    return await in_memory_limiter.hit(key, config)


def get_client_ip(request: Request) -> str:
    """Client IP, preferring proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def rate_limit(config_name: str, key_func: Callable[[Request], str] | None = None):
    """FastAPI dependency enforcing the named limit.

    Args:
        config_name: Key into get_rate_limits()
        key_func: Builds the counter key from the request, client IP by default

    Usage:
        @router.post("/identify")
        async def identify(
            _: Annotated[None, Depends(rate_limit("identify"))],
        ):
            ...
    """

    async def rate_limit_dependency(request: Request) -> None:
        if not settings.rate_limit_enabled:
            return

        config = get_rate_limits()[config_name]
        key = key_func(request) if key_func else get_client_ip(request)
        result = await check_rate_limit(key, config)
        request.state.rate_limit_remaining = result.remaining

        if result.limited:
            logger.warning(
                "Rate limit exceeded",
                extra={"client": key, "path": request.url.path, "limit": config.requests},
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"error": "Too many requests, please try again later", "code": "RATE_LIMIT_EXCEEDED"},
                headers={
                    "Retry-After": str(result.reset_seconds),
                    "X-RateLimit-Limit": str(config.requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return rate_limit_dependency
