import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.models.rate_limit import (
    ClientIdentifier,
    RateLimitClientType,
)
from src.modules.billing.pricing import PRICE_TABLE
from src.services.auth.rate_limiting import RateLimiter
from src.utils.settings.gemini import GeminiSettings
from src.utils.logger import get_logger

logger = get_logger(__name__)

HEALTH_CHECK_RATE_LIMIT = 3
HEALTH_CHECK_WINDOW_SECONDS = 10


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    service: str
    status: Literal["healthy", "unhealthy", "degraded"]
    connected: bool
    details: dict
    error: str | None = None


@dataclass
class OverallHealthStatus:
    """Overall health status with individual service results."""

    status: Literal["healthy", "degraded", "unhealthy"]
    services: dict[str, HealthCheckResult]
    timestamp: str


class HealthService:
    """Service for performing health checks on various system components."""

    def __init__(
        self,
        db: AsyncSession,
        rate_limiter: RateLimiter | None,
        redis_client: redis.Redis | None = None,
        gemini_settings: GeminiSettings | None = None,
    ):
        self.db = db
        self.rate_limiter = rate_limiter
        self.redis = redis_client
        self.gemini_settings = gemini_settings or GeminiSettings()

    async def check_database_health(self) -> HealthCheckResult:
        """Database connection health check."""
        try:
            result = await self.db.execute(text("SELECT 1 as test"))
            test_value = result.scalar()

            return HealthCheckResult(
                service="database",
                status="healthy",
                connected=True,
                details={"test_query_result": test_value},
            )
        except Exception as e:
            logger.error(f"Database health check error: {e}")
            return HealthCheckResult(
                service="database",
                status="unhealthy",
                connected=False,
                details={},
                error=str(e),
            )

    async def check_redis_health(self) -> HealthCheckResult:
        """Redis ping, only meaningful when counters live in Redis."""
        try:
            await self.redis.ping()
            return HealthCheckResult(
                service="redis", status="healthy", connected=True, details={}
            )
        except Exception as e:
            logger.error(f"Redis health check error: {e}")
            return HealthCheckResult(
                service="redis",
                status="unhealthy",
                connected=False,
                details={},
                error=str(e),
            )

    async def check_rate_limit_health(self) -> HealthCheckResult:
        """Exceed a tiny throwaway budget and confirm the last call is refused."""
        if self.rate_limiter is None:
            return HealthCheckResult(
                service="rate_limit",
                status="degraded",
                connected=False,
                details={"configured": False},
            )

        try:
            test_client = ClientIdentifier(
                client_type=RateLimitClientType.IP,
                client_id=f"health_check_{uuid.uuid4().hex}",
                scope="health",
            )

            results = []
            for _ in range(HEALTH_CHECK_RATE_LIMIT + 1):
                result = await self.rate_limiter.is_allowed(
                    test_client, HEALTH_CHECK_RATE_LIMIT, HEALTH_CHECK_WINDOW_SECONDS
                )
                results.append(result.is_allowed)

            last_request_blocked = not results[-1]
            all_before_limit_allowed = all(results[:HEALTH_CHECK_RATE_LIMIT])
            rate_limiting_works = last_request_blocked and all_before_limit_allowed

            return HealthCheckResult(
                service="rate_limit",
                status="healthy" if rate_limiting_works else "degraded",
                connected=True,
                details={
                    "backend": type(self.rate_limiter.store).__name__,
                    "requests_made": len(results),
                    "rate_limiting_works": rate_limiting_works,
                },
            )
        except Exception as e:
            logger.error(f"Rate limit health check error: {e}")
            return HealthCheckResult(
                service="rate_limit",
                status="unhealthy",
                connected=False,
                details={},
                error=str(e),
            )

    def check_pricing_health(self) -> HealthCheckResult:
        """The configured model must have rates in the price table."""
        model = self.gemini_settings.GEMINI_DEFAULT_MODEL
        priced = model in PRICE_TABLE.models
        return HealthCheckResult(
            service="pricing",
            status="healthy" if priced else "degraded",
            connected=True,
            details={
                "price_table_version": PRICE_TABLE.version,
                "model": model,
                "model_priced": priced,
            },
        )

    async def run_all_checks(self) -> OverallHealthStatus:
        """Run all health checks and return overall status."""
        checks = [self.check_database_health(), self.check_rate_limit_health()]
        if self.redis is not None:
            checks.append(self.check_redis_health())

        results = [*await asyncio.gather(*checks), self.check_pricing_health()]

        services = {}
        overall_status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
        for service_result in results:
            if service_result.status == "unhealthy":
                overall_status = "unhealthy"
            elif service_result.status == "degraded" and overall_status == "healthy":
                overall_status = "degraded"
            services[service_result.service] = service_result

        return OverallHealthStatus(
            status=overall_status,
            services=services,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
