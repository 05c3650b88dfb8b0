from functools import wraps
from typing import Any, Callable

from fastapi import Request, status

from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import MessageCode
from src.api.core.models.rate_limit import (
    ClientIdentifier,
    RateLimitClientType,
)
from src.utils.logger import get_client_ip, get_logger


logger = get_logger(__name__)


def create_rate_limit_key(
    request: Request, per: RateLimitClientType, scope: str
) -> ClientIdentifier:
    """
    Create rate limit client identifier.

    Per-user limits fall back to the client IP when the request carries no
    authenticated user.
    """
    user_id = getattr(request.state, "user_id", None)
    if per == RateLimitClientType.USER and user_id:
        return ClientIdentifier(
            client_type=RateLimitClientType.USER,
            client_id=str(user_id),
            scope=scope,
        )

    return ClientIdentifier(
        client_type=RateLimitClientType.IP,
        client_id=get_client_ip(request),
        scope=scope,
    )


async def check_rate_limit(
    request: Request,
    client_identifier: ClientIdentifier,
    limit: int,
    window_seconds: int,
) -> None:
    """
    Check rate limit for a client.

    Raises:
        FactCheckException: When rate limit is exceeded
    """
    rate_limiter = getattr(request.app.state, "rate_limiter", None)
    if rate_limiter is None:
        logger.warning("Rate limiter not configured, skipping rate limit")
        return

    result = await rate_limiter.is_allowed(client_identifier, limit, window_seconds)

    if not result.is_allowed:
        retry_after = result.time_to_reset or result.window_seconds
        logger.warning(
            f"Rate limit exceeded for {result.client_identifier}: "
            f"{result.current_count}/{result.limit} in {result.window_seconds}s"
        )

        raise FactCheckException(
            MessageCode.RATE_LIMIT_EXCEEDED,
            status.HTTP_429_TOO_MANY_REQUESTS,
            details={
                "limit": result.limit,
                "window_seconds": result.window_seconds,
                "retry_after": retry_after,
                "client_type": result.client_identifier.client_type.value,
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Window": str(result.window_seconds),
            },
        )


def rate_limit(
    limit: int,
    window_seconds: int,
    per: RateLimitClientType = RateLimitClientType.USER,
    scope: str = "analysis",
):
    """
    Rate limiting decorator for FastAPI endpoints.

    The endpoint must accept ``request: Request``.

    Args:
        limit: Maximum requests allowed
        window_seconds: Time window in seconds
        per: Whether to count per user or per client IP
        scope: Counter namespace, so endpoints can have separate budgets
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request | None = None
            for arg in args:
                if isinstance(arg, Request):
                    request = arg
                    break
            if not request:
                request = kwargs.get("request")

            if not request:
                logger.error("Rate limit decorator: Request not found")
                return await func(*args, **kwargs)

            client_identifier = create_rate_limit_key(request, per, scope)
            await check_rate_limit(request, client_identifier, limit, window_seconds)

            return await func(*args, **kwargs)

        return wrapper

    return decorator
