import asyncio
import time
from typing import Callable, Protocol

import redis.asyncio as redis

from src.api.core.models.rate_limit import (
    ClientIdentifier,
    RateLimitResult,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


class CounterStore(Protocol):
    """Backend holding fixed-window request counters."""

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit for ``key``.

        Returns the hit count in the current window and the seconds until
        that window resets.
        """
        ...


class InMemoryCounterStore:
    """Process-local counters for single-instance deployments."""

    PURGE_EVERY = 1000

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._calls = 0

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        async with self._lock:
            now = self._clock()
            self._calls += 1
            if self._calls % self.PURGE_EVERY == 0:
                self._purge(now)

            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, max(int(reset_at - now + 0.999), 0)

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]


class RedisCounterStore:
    """Shared counters for deployments running several instances."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        pipe = self.redis_client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()

        # First hit in the window, or a key that lost its expiry
        if ttl is None or ttl < 0:
            await self.redis_client.expire(key, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)


class RateLimiter:
    """Fixed-window rate limiter over a pluggable counter store."""

    def __init__(self, store: CounterStore):
        self.store = store

    async def is_allowed(
        self, client_identifier: ClientIdentifier, limit: int, window_seconds: int
    ) -> RateLimitResult:
        """
        Check if request is allowed within rate limit.

        Args:
            client_identifier: Typed client identifier for rate limiting
            limit: Maximum requests allowed
            window_seconds: Time window in seconds

        Returns:
            RateLimitResult: Typed result with rate limit information
        """
        try:
            current_count, time_to_reset = await self.store.increment(
                client_identifier.to_cache_key(), window_seconds
            )
        except Exception as e:
            logger.error(f"Rate limiter error for client {client_identifier}: {e}")
            # Fail open - allow request if the counter store is down
            return RateLimitResult(
                is_allowed=True,
                current_count=0,
                time_to_reset=None,
                client_identifier=client_identifier,
                limit=limit,
                window_seconds=window_seconds,
            )

        is_allowed = current_count <= limit
        return RateLimitResult(
            is_allowed=is_allowed,
            current_count=current_count,
            time_to_reset=None if is_allowed else time_to_reset,
            client_identifier=client_identifier,
            limit=limit,
            window_seconds=window_seconds,
        )


def build_rate_limiter(backend: str, redis_client: redis.Redis | None = None) -> RateLimiter:
    """Create the limiter for the configured backend."""
    if backend == "redis":
        if redis_client is None:
            raise ValueError("Redis backend requires a redis client")
        return RateLimiter(RedisCounterStore(redis_client))
    return RateLimiter(InMemoryCounterStore())
