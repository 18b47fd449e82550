"""Redis-backed per-key sliding-window rate limiting."""

from __future__ import annotations

import math
import time
from functools import lru_cache
from typing import Protocol
from uuid import UUID, uuid4

import structlog
from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from airesume.config import get_settings

logger = structlog.get_logger(__name__)
_WINDOW_SECONDS = 3600


class SlidingWindowRedis(Protocol):
    """Protocol for Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete members with score inside an inclusive range."""

    async def zcard(self, key: str) -> int:
        """Return sorted-set cardinality."""

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        """Add one or more scored members to sorted set."""

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Apply TTL to key."""


@lru_cache
def get_redis_client() -> Redis:
    """Create and cache the Redis client used for key rate limits."""
    settings = get_settings()
    return redis_async.from_url(settings.redis.url, decode_responses=True)


class KeyRateLimiter:
    """Count authenticated calls per key over a rolling hour."""

    def __init__(
        self, redis_client: SlidingWindowRedis, window_seconds: int = _WINDOW_SECONDS
    ) -> None:
        self._redis = redis_client
        self._window_milliseconds = window_seconds * 1000

    async def allow(self, key_id: UUID, limit: int) -> bool:
        """Record one call and return False once the key's hourly budget is spent.

        Calls are allowed when Redis is unavailable.
        """
        bucket_key = f"api_key_rate:{key_id}"
        now_ms = int(time.time() * 1000)
        window_start = now_ms - self._window_milliseconds

        try:
            await self._redis.zremrangebyscore(bucket_key, "-inf", window_start)
            current_count = await self._redis.zcard(bucket_key)
            if current_count >= limit:
                logger.info("api_key_rate_limited", key_id=str(key_id), limit=limit)
                return False

            member = f"{now_ms}:{uuid4()}"
            await self._redis.zadd(bucket_key, {member: now_ms})
            await self._redis.expire(bucket_key, math.ceil(self._window_milliseconds / 1000) + 1)
        except RedisError:
            logger.warning("rate_limit_backend_unavailable", key_id=str(key_id))
        return True


@lru_cache
def get_key_rate_limiter() -> KeyRateLimiter:
    """Create and cache the key rate limiter dependency."""
    return KeyRateLimiter(get_redis_client())
