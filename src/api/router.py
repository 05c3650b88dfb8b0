from fastapi import APIRouter

from src.api.analysis.router import router as analysis_router
from src.api.health.router import router as health_router, root_router
from src.api.points.router import router as points_router
from src.api.stripe.router import router as payments_router, webhook_router

# V1 API router
v1_router = APIRouter(prefix="/v1")

# Include domain routers
v1_router.include_router(analysis_router)
v1_router.include_router(points_router)
v1_router.include_router(payments_router)

# Main API router
api_router = APIRouter()
api_router.include_router(root_router)
api_router.include_router(health_router)
api_router.include_router(webhook_router)
api_router.include_router(v1_router)
