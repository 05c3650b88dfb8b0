"""Health check endpoints for monitoring."""

from fastapi import APIRouter, Request

from src.api.core.dependencies import AsyncSessionDep
from src.modules.health.service import HealthService, OverallHealthStatus
from src.utils.logger import get_logger

logger = get_logger(__name__)

root_router = APIRouter()
router = APIRouter(prefix="/health", tags=["health"])


@root_router.get("/")
async def root():
    return {"service": "factcheck-api", "docs": "/docs"}


@router.get("/")
async def health_check(request: Request, db: AsyncSessionDep) -> OverallHealthStatus:
    """Database and rate limiter checks."""
    health_service = HealthService(
        db,
        getattr(request.app.state, "rate_limiter", None),
        getattr(request.app.state, "redis_client", None),
    )
    return await health_service.run_all_checks()


@router.get("/liveness")
async def liveness_check():
    """Simple liveness check - indicates if service is running."""
    return {"status": "alive", "service": "factcheck-api"}
