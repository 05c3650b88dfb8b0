"""Authentication and request-throttling services."""

from .rate_limiting import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_rate_limiter,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimiter",
    "RedisCounterStore",
    "build_rate_limiter",
]
