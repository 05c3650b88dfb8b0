import asyncio

from fastapi import APIRouter, Request, status
from fastapi.responses import StreamingResponse

from src.api.analysis.schemas import (
    AnalysisGenerateRequest,
    AnalysisResponse,
    ReportSynthesisRequest,
    ReportSynthesisResponse,
)
from src.api.core.constants import (
    ANALYSIS_RATE_LIMIT,
    ANALYSIS_RATE_LIMIT_WINDOW_SECONDS,
    SSE_HEADERS,
)
from src.api.core.decorators.rate_limit import rate_limit
from src.api.core.dependencies import (
    AnalysisOrchestratorDep,
    CurrentUserAuthDep,
    ModelClientDep,
    PointsServiceDep,
    build_analysis_orchestrator,
)
from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import APIResponse, MessageCode
from src.core.context import AuthenticatedUserContext
from src.modules.analysis.infrastructure.gemini_client import GenerationRequest
from src.modules.analysis.orchestrator import AnalysisRequest
from src.modules.billing.points.service import PointsService
from src.utils.logger import get_logger
from src.utils.settings.gemini import GeminiSettings

logger = get_logger(__name__)

REPORT_TIMEOUT_SECONDS = 300

router = APIRouter(prefix="/analysis", tags=["analysis"])


def _to_analysis_request(
    current_user: AuthenticatedUserContext, body: AnalysisGenerateRequest
) -> AnalysisRequest:
    return AnalysisRequest(
        user_id=current_user.user_id,
        prompt=body.prompt,
        service_type=body.service_type,
        mode=body.mode,
        is_batch=body.is_batch,
        model=body.model,
        system_instruction=body.system_instruction,
        video_url=str(body.video_url) if body.video_url else None,
        enable_google_search=body.enable_google_search,
    )


@router.post("/generate", response_model=APIResponse[AnalysisResponse])
@rate_limit(limit=ANALYSIS_RATE_LIMIT, window_seconds=ANALYSIS_RATE_LIMIT_WINDOW_SECONDS)
async def generate_analysis(
    request: Request,
    body: AnalysisGenerateRequest,
    current_user: CurrentUserAuthDep,
    points_service: PointsServiceDep,
    orchestrator: AnalysisOrchestratorDep,
) -> APIResponse[AnalysisResponse]:
    """Run an analysis and charge for it once the answer has validated."""
    await points_service.ensure_account(current_user.user_id, current_user.email)

    result = await orchestrator.run(_to_analysis_request(current_user, body))
    return APIResponse.success(data=AnalysisResponse(**result.to_response()))


@router.post("/generate-stream")
@rate_limit(limit=ANALYSIS_RATE_LIMIT, window_seconds=ANALYSIS_RATE_LIMIT_WINDOW_SECONDS)
async def generate_analysis_stream(
    request: Request,
    body: AnalysisGenerateRequest,
    current_user: CurrentUserAuthDep,
    points_service: PointsServiceDep,
    model_client: ModelClientDep,
) -> StreamingResponse:
    """Same as ``/generate`` but reports progress as Server-Sent Events.

    Account provisioning failures are plain error responses, not stream events.
    """
    await points_service.ensure_account(current_user.user_id, current_user.email)
    analysis_request = _to_analysis_request(current_user, body)
    session_factory = request.app.state.session_factory

    async def event_stream():
        # The session must outlive the handler, so the stream owns it
        async with session_factory() as session:
            orchestrator = build_analysis_orchestrator(PointsService(session), model_client)
            async for event in orchestrator.stream(
                analysis_request, is_disconnected=request.is_disconnected
            ):
                yield event.encode()

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=SSE_HEADERS
    )


@router.post("/synthesize-report", response_model=APIResponse[ReportSynthesisResponse])
async def synthesize_report(
    request: Request,
    body: ReportSynthesisRequest,
    current_user: CurrentUserAuthDep,
    model_client: ModelClientDep,
) -> APIResponse[ReportSynthesisResponse]:
    """Free-text report from already-collected analyses. Not billed."""
    settings = GeminiSettings()
    generation = GenerationRequest(
        prompt=body.prompt,
        json_response=False,
        temperature=settings.GEMINI_REPORT_TEMPERATURE,
        max_output_tokens=settings.GEMINI_REPORT_MAX_OUTPUT_TOKENS,
    )

    try:
        async with asyncio.timeout(REPORT_TIMEOUT_SECONDS):
            result = await model_client.generate(generation)
    except Exception as e:
        logger.error(
            "Report synthesis failed",
            user_id=current_user.user_id,
            error=str(e),
            exception_type=type(e).__name__,
        )
        raise FactCheckException(
            MessageCode.AI_GENERATION_FAILED,
            status.HTTP_502_BAD_GATEWAY,
            details={"reason": type(e).__name__},
        )

    logger.info("Report synthesized", length=len(result.text))
    return APIResponse.success(data=ReportSynthesisResponse(report=result.text))
