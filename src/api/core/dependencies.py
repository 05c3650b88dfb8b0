from typing import Annotated, AsyncGenerator

import structlog
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.context import AuthenticatedUserContext
from src.modules.analysis.infrastructure.gemini_client import ModelClient
from src.modules.analysis.orchestrator import AnalysisOrchestrator
from src.modules.billing.points.service import PointsService
from src.modules.billing.stripe.service import StripePaymentService
from src.services.auth.handlers import extract_bearer_token, handle_jwt_auth
from src.utils.settings.analysis import AnalysisSettings
from src.utils.settings.gemini import GeminiSettings


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_user_authenticated(request: Request) -> AuthenticatedUserContext:
    """Verify the bearer token and expose the caller to rate limiting and logs."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    claims = handle_jwt_auth(token)

    user_id = str(claims["sub"])
    request.state.user_id = user_id
    structlog.contextvars.bind_contextvars(user_id=user_id)

    return AuthenticatedUserContext(user_id=user_id, email=claims.get("email"))


async def get_points_service(
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> PointsService:
    """Get points service with database session."""
    return PointsService(db)


async def get_stripe_payment_service(
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> StripePaymentService:
    """Get Stripe payment service with database session."""
    return StripePaymentService(db)


def get_model_client(request: Request) -> ModelClient:
    return request.app.state.model_client


def build_analysis_orchestrator(
    points_service: PointsService, model_client: ModelClient
) -> AnalysisOrchestrator:
    analysis_settings = AnalysisSettings()
    return AnalysisOrchestrator(
        points_service=points_service,
        model_client=model_client,
        max_retries=analysis_settings.ANALYSIS_MAX_RETRIES,
        timeout_seconds=GeminiSettings().GEMINI_TIMEOUT_SECONDS,
        progress_every=analysis_settings.ANALYSIS_PROGRESS_EVERY_CHUNKS,
    )


async def get_analysis_orchestrator(
    points_service: Annotated[PointsService, Depends(get_points_service)],
    model_client: Annotated[ModelClient, Depends(get_model_client)],
) -> AnalysisOrchestrator:
    return build_analysis_orchestrator(points_service, model_client)


AsyncSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
CurrentUserAuthDep = Annotated[
    AuthenticatedUserContext, Depends(get_current_user_authenticated)
]
PointsServiceDep = Annotated[PointsService, Depends(get_points_service)]
StripePaymentServiceDep = Annotated[
    StripePaymentService, Depends(get_stripe_payment_service)
]
ModelClientDep = Annotated[ModelClient, Depends(get_model_client)]
AnalysisOrchestratorDep = Annotated[
    AnalysisOrchestrator, Depends(get_analysis_orchestrator)
]
