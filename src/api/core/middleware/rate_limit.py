"""Per-IP request throttling for the versioned API."""

from fastapi import Request
from fastapi.responses import JSONResponse

from src.api.core.constants import (
    GLOBAL_IP_RATE_LIMIT,
    GLOBAL_IP_RATE_LIMIT_WINDOW_SECONDS,
)
from src.api.core.decorators.rate_limit import check_rate_limit, create_rate_limit_key
from src.api.core.exceptions.base import FactCheckException
from src.api.core.models.rate_limit import RateLimitClientType


async def ip_rate_limit_middleware(request: Request, call_next):
    if not request.url.path.startswith("/v1/"):
        return await call_next(request)

    client_identifier = create_rate_limit_key(
        request, RateLimitClientType.IP, scope="global"
    )
    try:
        await check_rate_limit(
            request,
            client_identifier,
            GLOBAL_IP_RATE_LIMIT,
            GLOBAL_IP_RATE_LIMIT_WINDOW_SECONDS,
        )
    except FactCheckException as e:
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_response_dict(),
            headers=e.headers,
        )

    return await call_next(request)
