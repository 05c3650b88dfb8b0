import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.core.exceptions.base import register_exception_handlers
from src.api.core.middleware.logging import logging_middleware
from src.api.core.middleware.rate_limit import ip_rate_limit_middleware
from src.api.router import api_router
from src.database.connection import AsyncSessionLocal
from src.modules.analysis.infrastructure.gemini_client import GeminiModelClient
from src.redis.client import close_redis_pool, get_redis_client
from src.services.auth.rate_limiting import build_rate_limiter
from src.utils.settings.analysis import AnalysisSettings
from src.utils.settings.app import AppSettings
from src.utils.logger import setup_logging


app_settings = AppSettings()
is_production = app_settings.ENVIRONMENT.upper() == "PROD"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger = setup_logging(is_production, debug=app_settings.DEBUG)
    logger.info("Starting FactCheck API...")
    app_settings.validate_prod()

    # Tests may inject their own collaborators before startup
    if getattr(app.state, "session_factory", None) is None:
        app.state.session_factory = AsyncSessionLocal
        logger.info("Database session factory added to app state")

    if getattr(app.state, "rate_limiter", None) is None:
        backend = AnalysisSettings().RATE_LIMIT_BACKEND
        app.state.redis_client = await get_redis_client() if backend == "redis" else None
        app.state.rate_limiter = build_rate_limiter(backend, app.state.redis_client)
        logger.info("Rate limiter configured", backend=backend)

    if getattr(app.state, "model_client", None) is None:
        app.state.model_client = GeminiModelClient()
        logger.info("Gemini model client configured")

    yield

    # Shutdown
    logger.info("Shutting down FactCheck API...")
    await close_redis_pool()


# Create app with production settings
app = FastAPI(
    title="FactCheck API",
    description="AI fact-checking with prepaid points billing",
    version=app_settings.API_VERSION,
    lifespan=lifespan,
    # Security: Disable docs in production
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
    openapi_url=None if is_production else "/openapi.json",
)

# Register global exception handlers
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)

app.middleware("http")(ip_rate_limit_middleware)
app.middleware("http")(logging_middleware)

app.include_router(api_router)


def run_dev_server():
    """Run development server with auto-reload."""
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=8010, reload=True, access_log=False
    )


def run_prod_server():
    """Run production server."""
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=8010, reload=False, access_log=False
    )
