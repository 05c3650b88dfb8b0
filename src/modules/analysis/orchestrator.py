"""Runs one analysis request from balance check to deduction.

The only rule that matters here: points are deducted after the answer has
validated, exactly once, and never when the caller does not get the answer.
"""

import asyncio
import json
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable
from uuid import uuid4

from fastapi import status

from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import MessageCode
from src.modules.analysis.infrastructure.gemini_client import (
    GenerationRequest,
    GenerationResult,
    ModelClient,
    UsageReport,
)
from src.modules.analysis.service_types import AnalysisMode, ServiceType
from src.modules.analysis.validation import EXCERPT_LENGTH, ResponseValidator, ValidationOutcome
from src.modules.billing.points.service import PointsService
from src.modules.billing.pricing import (
    PRICE_TABLE_VERSION,
    minimum_charge,
    price_fixed,
    quote_usage,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

RETRY_INSTRUCTION = (
    "IMPORTANT: your previous answer was cut off or was not valid JSON. "
    "Return one complete JSON object. Close all brackets and quotes and fill "
    "in every required field."
)
DESCRIPTION_TITLE_LENGTH = 50

DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class AnalysisRequest:
    user_id: str
    prompt: str
    service_type: ServiceType = ServiceType.VIDEO
    mode: AnalysisMode = AnalysisMode.STANDARD
    is_batch: bool = False
    model: str | None = None
    system_instruction: str | None = None
    video_url: str | None = None
    enable_google_search: bool = False

    @property
    def is_deep(self) -> bool:
        return self.mode == AnalysisMode.DEEP

    def to_generation(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            mode=self.mode,
            model=self.model,
            system_instruction=self.system_instruction,
            video_url=self.video_url,
            enable_google_search=self.enable_google_search,
        )


@dataclass(frozen=True)
class AnalysisResult:
    analysis_id: str
    parsed: dict
    usage: UsageReport
    points_deducted: int
    new_balance: int
    is_deep: bool
    attempts: int = 1

    def to_response(self) -> dict:
        return {
            "text": json.dumps(self.parsed, ensure_ascii=False),
            "usageMetadata": self.usage.to_metadata(),
            "points": {
                "deducted": self.points_deducted,
                "costInPoints": self.points_deducted,
                "newBalance": self.new_balance,
                "isDeep": self.is_deep,
            },
        }


@dataclass(frozen=True)
class StreamEvent:
    """One Server-Sent Event emitted by the streaming variant."""

    event: str
    data: dict = field(default_factory=dict)

    @classmethod
    def progress(cls, message: str) -> "StreamEvent":
        return cls("progress", {"status": message})

    def encode(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


class AnalysisOrchestrator:
    """Drives preflight, generation, validation, pricing and deduction."""

    def __init__(
        self,
        points_service: PointsService,
        model_client: ModelClient,
        validator: ResponseValidator | None = None,
        max_retries: int = 1,
        timeout_seconds: float = 900,
        progress_every: int = 5,
    ):
        self.points_service = points_service
        self.model_client = model_client
        self.validator = validator or ResponseValidator()
        self.max_retries = max(max_retries, 0)
        self.timeout_seconds = timeout_seconds
        self.progress_every = max(progress_every, 1)

    async def run(self, request: AnalysisRequest) -> AnalysisResult:
        """Non-streaming analysis.

        Raises:
            FactCheckException: ``INSUFFICIENT_POINTS`` (402) before or after
                generation, or one of the ``AI_*`` codes (502) when no attempt
                produced a usable answer. Nothing is deducted in either case.
        """
        await self._preflight(request)

        outcome: ValidationOutcome | None = None
        attempts = 0
        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            result = await self._generate(self._attempt_request(request, attempt))
            outcome = self.validator.validate(result.text, request.service_type)
            if outcome.valid:
                return await self._bill(request, outcome.parsed, result.usage, attempts)
            self._log_invalid(request, outcome, attempts)

        raise self._validation_error(outcome, attempts)

    async def stream(
        self,
        request: AnalysisRequest,
        is_disconnected: DisconnectCheck | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming analysis yielding ``progress`` events then ``complete`` or ``error``.

        If ``is_disconnected`` reports the caller gone, generation is abandoned
        and nothing is billed.
        """
        try:
            await self._preflight(request)
            yield StreamEvent.progress("Sending request to the model...")

            outcome: ValidationOutcome | None = None
            attempts = 0
            for attempt in range(self.max_retries + 1):
                attempts = attempt + 1
                if attempt:
                    yield StreamEvent.progress("Response incomplete, retrying...")

                text_parts: list[str] = []
                usage: UsageReport | None = None
                chunks = self._consume_stream(
                    self._attempt_request(request, attempt), text_parts, is_disconnected
                )
                async with aclosing(chunks):
                    async for chunk_event in chunks:
                        if chunk_event is None:
                            logger.info(
                                "Client disconnected, abandoning analysis",
                                user_id=request.user_id,
                                attempt=attempts,
                            )
                            return
                        if isinstance(chunk_event, UsageReport):
                            usage = chunk_event
                        else:
                            yield chunk_event

                yield StreamEvent.progress("Validating response...")
                outcome = self.validator.validate("".join(text_parts), request.service_type)
                if outcome.valid:
                    break
                self._log_invalid(request, outcome, attempts)
            else:
                raise self._validation_error(outcome, attempts)

            if is_disconnected is not None and await is_disconnected():
                logger.info(
                    "Client disconnected before billing", user_id=request.user_id
                )
                return

            yield StreamEvent.progress("Finalizing and billing...")
            result = await self._bill(
                request, outcome.parsed, usage or UsageReport(), attempts
            )
            yield StreamEvent("complete", result.to_response())

        except FactCheckException as e:
            yield StreamEvent("error", e.to_response_dict())
        except Exception as e:
            # Headers are already sent, so the failure can only travel as an event
            logger.exception(
                "Streaming analysis failed",
                user_id=request.user_id,
                exception_type=type(e).__name__,
            )
            yield StreamEvent(
                "error",
                FactCheckException(
                    MessageCode.INTERNAL_ERROR,
                    details={"error_type": type(e).__name__},
                ).to_response_dict(),
            )

    async def _consume_stream(
        self,
        generation: GenerationRequest,
        text_parts: list[str],
        is_disconnected: DisconnectCheck | None,
    ) -> AsyncIterator[StreamEvent | UsageReport | None]:
        """Pull chunks into ``text_parts``.

        Yields progress events, the latest usage report, and ``None`` when the
        caller has disconnected.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        iterator = self.model_client.generate_stream(generation)
        text_chunks = 0
        tool_chunks = 0
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    yield None
                    return
                try:
                    async with asyncio.timeout_at(deadline):
                        chunk = await anext(iterator)
                except StopAsyncIteration:
                    break
                except TimeoutError:
                    raise self._generation_error("timeout")
                except FactCheckException:
                    raise
                except Exception as e:
                    logger.error(
                        "Model stream failed",
                        error=str(e),
                        exception_type=type(e).__name__,
                    )
                    raise self._generation_error(type(e).__name__)

                if chunk.usage is not None:
                    yield chunk.usage
                if chunk.is_tool_call:
                    tool_chunks += 1
                    continue
                if chunk.text:
                    text_parts.append(chunk.text)
                    text_chunks += 1
                    if text_chunks % self.progress_every == 0:
                        size_kb = round(sum(len(p) for p in text_parts) / 1024)
                        yield StreamEvent.progress(f"Analyzing ({size_kb} KB)...")
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        logger.debug(
            "Model stream finished", text_chunks=text_chunks, tool_chunks=tool_chunks
        )

    async def _preflight(self, request: AnalysisRequest) -> None:
        required = minimum_charge(request.service_type, request.is_deep)
        balance = await self.points_service.get_balance(request.user_id)
        if balance < required:
            logger.info(
                "Preflight refused, insufficient points",
                user_id=request.user_id,
                balance=balance,
                required=required,
            )
            raise self._insufficient_points(balance, required)

    async def _generate(self, generation: GenerationRequest) -> GenerationResult:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self.model_client.generate(generation)
        except TimeoutError:
            raise self._generation_error("timeout")
        except FactCheckException:
            raise
        except Exception as e:
            logger.error(
                "Model generation failed",
                error=str(e),
                exception_type=type(e).__name__,
            )
            raise self._generation_error(type(e).__name__)

    def _attempt_request(self, request: AnalysisRequest, attempt: int) -> GenerationRequest:
        generation = request.to_generation()
        if attempt == 0:
            return generation
        return generation.with_instruction(RETRY_INSTRUCTION)

    async def _bill(
        self,
        request: AnalysisRequest,
        parsed: dict,
        usage: UsageReport,
        attempts: int,
    ) -> AnalysisResult:
        points, pricing_details = self._price(request, usage)
        analysis_id = uuid4().hex

        title = parsed.get("title") if isinstance(parsed.get("title"), str) else None
        description = f"Analysis: {(title or request.service_type.value)[:DESCRIPTION_TITLE_LENGTH]}"

        deduction = await self.points_service.deduct(
            request.user_id,
            points,
            description,
            metadata={
                "service_type": request.service_type.value,
                "mode": request.mode.value,
                "is_batch": request.is_batch,
                "prompt_tokens": usage.prompt_tokens,
                "output_tokens": usage.output_tokens,
                "attempts": attempts,
                "price_table_version": PRICE_TABLE_VERSION,
                **pricing_details,
            },
            reference_id=analysis_id,
        )
        if not deduction.success:
            raise self._insufficient_points(deduction.new_balance, points)

        return AnalysisResult(
            analysis_id=analysis_id,
            parsed=parsed,
            usage=usage,
            points_deducted=points,
            new_balance=deduction.new_balance,
            is_deep=request.is_deep,
            attempts=attempts,
        )

    def _price(self, request: AnalysisRequest, usage: UsageReport) -> tuple[int, dict[str, Any]]:
        if not request.service_type.is_token_metered:
            points = price_fixed(request.service_type)
            logger.info(
                "Billing fixed-price analysis",
                service_type=request.service_type.value,
                points=points,
            )
            return points, {}

        quote = quote_usage(
            usage.prompt_tokens,
            usage.output_tokens,
            is_deep=request.is_deep,
            is_batch=request.is_batch,
            model=request.model,
        )
        logger.info(
            "Billing token-metered analysis",
            prompt_tokens=usage.prompt_tokens,
            output_tokens=usage.output_tokens,
            cost_usd=f"{quote.cost_usd:.6f}",
            cost_eur=f"{quote.cost_eur:.6f}",
            points=quote.points,
            mode=quote.mode.value,
            model=quote.model,
        )
        return quote.points, {
            "model": quote.model,
            "cost_usd": f"{quote.cost_usd:.6f}",
            "cost_eur": f"{quote.cost_eur:.6f}",
        }

    @staticmethod
    def _log_invalid(
        request: AnalysisRequest, outcome: ValidationOutcome, attempts: int
    ) -> None:
        logger.warning(
            "Model answer rejected",
            user_id=request.user_id,
            service_type=request.service_type.value,
            code=outcome.code.value if outcome.code else None,
            reason=outcome.reason,
            attempt=attempts,
        )

    @staticmethod
    def _validation_error(
        outcome: ValidationOutcome | None, attempts: int
    ) -> FactCheckException:
        code = outcome.code if outcome and outcome.code else MessageCode.AI_INCOMPLETE_RESPONSE
        details: dict[str, Any] = {"attempts": attempts, "charged": False}
        if outcome is not None:
            details["reason"] = outcome.reason
            excerpt = outcome.diagnostics.get("excerpt")
            if excerpt:
                details["excerpt"] = excerpt[:EXCERPT_LENGTH]
        return FactCheckException(code, status.HTTP_502_BAD_GATEWAY, details=details)

    @staticmethod
    def _generation_error(reason: str) -> FactCheckException:
        return FactCheckException(
            MessageCode.AI_GENERATION_FAILED,
            status.HTTP_502_BAD_GATEWAY,
            details={"reason": reason, "charged": False},
        )

    @staticmethod
    def _insufficient_points(balance: int, required: int) -> FactCheckException:
        return FactCheckException(
            MessageCode.INSUFFICIENT_POINTS,
            status.HTTP_402_PAYMENT_REQUIRED,
            details={"currentBalance": balance, "required": required},
        )
