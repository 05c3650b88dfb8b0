"""Tests for the analysis orchestrator: preflight, retries, billing and streaming."""

import json

import pytest
from sqlalchemy import select

from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import MessageCode
from src.database.models import PointTransaction, TransactionKind
from src.modules.analysis.infrastructure.gemini_client import GenerationChunk, UsageReport
from src.modules.analysis.orchestrator import (
    RETRY_INSTRUCTION,
    AnalysisOrchestrator,
    AnalysisRequest,
    StreamEvent,
)
from src.modules.analysis.service_types import AnalysisMode, ServiceType
from src.modules.billing.pricing import PRICE_TABLE_VERSION, price_by_usage

from tests.utils.assertions import assert_factcheck_exception
from tests.utils.fakes import VALID_VIDEO_ANSWER, ScriptedModelClient

FENCED_ANSWER = (
    'Here you go: ```json\n{"summary":"A long enough summary text.",'
    '"overallAssessment":"MIXED","detailedMetrics":{"factualAccuracy":0.5}}\n```'
)

ARTICLE_TITLE = "Central bank raises interest rates for the third time this year"
ARTICLE_ANSWER = json.dumps(
    {
        "title": ARTICLE_TITLE,
        "siteName": "Example News",
        "summary": "The article reports a quarter point increase in the base rate.",
    }
)


def _orchestrator(points_service, client, **kwargs) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(points_service, client, **kwargs)


async def _ledger(session, user_id: str) -> list[PointTransaction]:
    result = await session.execute(
        select(PointTransaction).where(PointTransaction.user_id == user_id)
    )
    return list(result.scalars().all())


async def _collect(stream) -> list[StreamEvent]:
    return [event async for event in stream]


@pytest.fixture
async def user(db_session, user_factory):
    return await user_factory.create_async(db_session, points_balance=100)


class TestRun:
    async def test_fenced_answer_is_billed_once(self, db_session, points_service, user):
        client = ScriptedModelClient([FENCED_ANSWER])
        orchestrator = _orchestrator(points_service, client)

        result = await orchestrator.run(AnalysisRequest(user_id=user.id, prompt="check"))

        expected = price_by_usage(1200, 800, is_deep=False, is_batch=False)
        assert result.points_deducted == expected
        assert result.new_balance == 100 - expected
        assert result.parsed["overallAssessment"] == "MIXED"
        assert result.attempts == 1
        assert await points_service.get_balance(user.id) == 100 - expected

        [transaction] = await _ledger(db_session, user.id)
        assert transaction.kind == TransactionKind.DEDUCTION
        assert transaction.amount == -expected
        assert transaction.reference_id == result.analysis_id
        assert transaction.extra_metadata["price_table_version"] == PRICE_TABLE_VERSION
        assert transaction.extra_metadata["prompt_tokens"] == 1200

    async def test_response_shape(self, points_service, user):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER])

        result = await _orchestrator(points_service, client).run(
            AnalysisRequest(user_id=user.id, prompt="check", mode=AnalysisMode.DEEP)
        )
        response = result.to_response()

        assert json.loads(response["text"]) == json.loads(VALID_VIDEO_ANSWER)
        assert response["usageMetadata"] == {
            "promptTokenCount": 1200,
            "candidatesTokenCount": 800,
            "totalTokenCount": 2000,
        }
        assert response["points"] == {
            "deducted": 10,
            "costInPoints": 10,
            "newBalance": 90,
            "isDeep": True,
        }

    async def test_invalid_answer_twice_charges_nothing(
        self, db_session, points_service, user
    ):
        client = ScriptedModelClient(["not json at all"])

        with pytest.raises(FactCheckException) as exc_info:
            await _orchestrator(points_service, client).run(
                AnalysisRequest(user_id=user.id, prompt="check")
            )

        assert exc_info.value.message_code in (
            MessageCode.AI_INVALID_FORMAT,
            MessageCode.AI_JSON_PARSE_ERROR,
        )
        assert exc_info.value.status_code == 502
        assert exc_info.value.details["attempts"] == 2
        assert exc_info.value.details["charged"] is False
        assert len(client.requests) == 2
        assert await points_service.get_balance(user.id) == 100
        assert await _ledger(db_session, user.id) == []

    async def test_retry_appends_instruction_and_discards_first_answer(
        self, points_service, user
    ):
        client = ScriptedModelClient(['{"summary": "The first answer was cut', VALID_VIDEO_ANSWER])

        result = await _orchestrator(points_service, client).run(
            AnalysisRequest(user_id=user.id, prompt="check this video")
        )

        assert result.attempts == 2
        assert result.parsed == json.loads(VALID_VIDEO_ANSWER)
        assert client.requests[0].prompt == "check this video"
        assert client.requests[1].prompt.startswith("check this video")
        assert client.requests[1].prompt.endswith(RETRY_INSTRUCTION)

    async def test_retry_budget_is_configurable(self, points_service, user):
        client = ScriptedModelClient(["not json at all"])

        with pytest.raises(FactCheckException):
            await _orchestrator(points_service, client, max_retries=0).run(
                AnalysisRequest(user_id=user.id, prompt="check")
            )

        assert len(client.requests) == 1

    async def test_preflight_refuses_without_calling_model(
        self, db_session, points_service, user_factory
    ):
        poor = await user_factory.create_async(db_session, points_balance=9)
        client = ScriptedModelClient([VALID_VIDEO_ANSWER])

        with pytest.raises(FactCheckException) as exc_info:
            await _orchestrator(points_service, client).run(
                AnalysisRequest(user_id=poor.id, prompt="check", mode=AnalysisMode.DEEP)
            )

        assert_factcheck_exception(exc_info.value, MessageCode.INSUFFICIENT_POINTS, 402)
        assert exc_info.value.details == {"currentBalance": 9, "required": 10}
        assert client.requests == []

    async def test_fixed_price_service(self, db_session, points_service, user):
        client = ScriptedModelClient([ARTICLE_ANSWER])

        result = await _orchestrator(points_service, client).run(
            AnalysisRequest(user_id=user.id, prompt="check", service_type=ServiceType.LINK)
        )

        assert result.points_deducted == 12
        [transaction] = await _ledger(db_session, user.id)
        assert transaction.description == f"Analysis: {ARTICLE_TITLE[:50]}"
        assert "cost_usd" not in transaction.extra_metadata

    async def test_usage_based_price_above_floor(self, points_service, user):
        client = ScriptedModelClient(
            [VALID_VIDEO_ANSWER],
            usage=UsageReport(prompt_tokens=1_000_000, output_tokens=100_000),
        )

        result = await _orchestrator(points_service, client).run(
            AnalysisRequest(user_id=user.id, prompt="check", is_batch=True)
        )

        assert result.points_deducted == price_by_usage(1_000_000, 100_000, is_batch=True)
        assert result.points_deducted > 5

    async def test_balance_spent_during_generation(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=20)
        client = ScriptedModelClient(
            [VALID_VIDEO_ANSWER],
            usage=UsageReport(prompt_tokens=2_000_000, output_tokens=0),
        )

        with pytest.raises(FactCheckException) as exc_info:
            await _orchestrator(points_service, client).run(
                AnalysisRequest(user_id=user.id, prompt="check")
            )

        assert_factcheck_exception(exc_info.value, MessageCode.INSUFFICIENT_POINTS, 402)
        assert await points_service.get_balance(user.id) == 20

    async def test_timeout_is_a_generation_failure(self, points_service, user):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER], delay=1)

        with pytest.raises(FactCheckException) as exc_info:
            await _orchestrator(points_service, client, timeout_seconds=0.05).run(
                AnalysisRequest(user_id=user.id, prompt="check")
            )

        assert_factcheck_exception(exc_info.value, MessageCode.AI_GENERATION_FAILED, 502)
        assert exc_info.value.details == {"reason": "timeout", "charged": False}
        assert await points_service.get_balance(user.id) == 100

    async def test_model_error_is_not_retried(self, points_service, user):
        client = ScriptedModelClient([ConnectionError("upstream reset")])

        with pytest.raises(FactCheckException) as exc_info:
            await _orchestrator(points_service, client).run(
                AnalysisRequest(user_id=user.id, prompt="check")
            )

        assert exc_info.value.message_code == MessageCode.AI_GENERATION_FAILED
        assert exc_info.value.details["reason"] == "ConnectionError"
        assert len(client.requests) == 1


class TestStream:
    async def test_event_sequence(self, points_service, user):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER], chunk_size=8)
        orchestrator = _orchestrator(points_service, client, progress_every=5)

        events = await _collect(
            orchestrator.stream(AnalysisRequest(user_id=user.id, prompt="check"))
        )
        names = [event.event for event in events]
        statuses = [event.data.get("status") for event in events if event.event == "progress"]

        assert names[-1] == "complete"
        assert "error" not in names
        assert statuses[0] == "Sending request to the model..."
        assert statuses[-2:] == ["Validating response...", "Finalizing and billing..."]
        assert any(s.startswith("Analyzing (") for s in statuses)
        assert events[-1].data["points"]["newBalance"] == 95
        assert await points_service.get_balance(user.id) == 95

    async def test_events_encode_as_sse(self):
        event = StreamEvent.progress("Validating response...")

        assert event.encode() == (
            'event: progress\ndata: {"status": "Validating response..."}\n\n'
        )

    async def test_stream_retry_starts_from_scratch(self, points_service, user):
        client = ScriptedModelClient(['{"summary": "cut', VALID_VIDEO_ANSWER])

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=user.id, prompt="check")
            )
        )

        statuses = [e.data.get("status") for e in events if e.event == "progress"]
        assert "Response incomplete, retrying..." in statuses
        assert events[-1].event == "complete"
        assert json.loads(events[-1].data["text"]) == json.loads(VALID_VIDEO_ANSWER)

    async def test_stream_validation_failure_is_error_event(
        self, db_session, points_service, user
    ):
        client = ScriptedModelClient(["not json at all"])

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=user.id, prompt="check")
            )
        )

        assert events[-1].event == "error"
        assert events[-1].data["message_code"] == MessageCode.AI_INVALID_FORMAT
        assert "complete" not in [e.event for e in events]
        assert await _ledger(db_session, user.id) == []

    async def test_stream_preflight_failure(self, db_session, points_service, user_factory):
        poor = await user_factory.create_async(db_session, points_balance=0)
        client = ScriptedModelClient([VALID_VIDEO_ANSWER])

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=poor.id, prompt="check")
            )
        )

        assert [e.event for e in events] == ["error"]
        assert events[0].data["message_code"] == MessageCode.INSUFFICIENT_POINTS
        assert events[0].data["details"]["currentBalance"] == 0
        assert client.requests == []

    async def test_disconnect_during_generation_skips_billing(
        self, db_session, points_service, user
    ):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER], chunk_size=4)
        checks = 0

        async def is_disconnected() -> bool:
            nonlocal checks
            checks += 1
            return checks > 3

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=user.id, prompt="check"), is_disconnected
            )
        )

        assert [e.event for e in events] == ["progress"]
        assert client.closed_streams == 1
        assert await points_service.get_balance(user.id) == 100
        assert await _ledger(db_session, user.id) == []

    async def test_disconnect_before_billing_skips_billing(self, points_service, user):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER], chunk_size=1000)
        checks = 0

        async def is_disconnected() -> bool:
            nonlocal checks
            checks += 1
            # Connected while streaming the single chunk and the usage chunk
            return checks > 3

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=user.id, prompt="check"), is_disconnected
            )
        )

        statuses = [e.data.get("status") for e in events]
        assert "Validating response..." in statuses
        assert "Finalizing and billing..." not in statuses
        assert await points_service.get_balance(user.id) == 100

    async def test_tool_chunks_are_not_analysis_text(self, points_service, user):
        chunks = [
            GenerationChunk(is_tool_call=True),
            GenerationChunk(text=VALID_VIDEO_ANSWER[:20]),
            GenerationChunk(is_tool_call=True),
            GenerationChunk(text=VALID_VIDEO_ANSWER[20:]),
        ]
        client = ScriptedModelClient([chunks])

        events = await _collect(
            _orchestrator(points_service, client).stream(
                AnalysisRequest(user_id=user.id, prompt="check", mode=AnalysisMode.DEEP)
            )
        )

        assert events[-1].event == "complete"
        assert json.loads(events[-1].data["text"]) == json.loads(VALID_VIDEO_ANSWER)

    async def test_stream_timeout_is_error_event(self, points_service, user):
        client = ScriptedModelClient([VALID_VIDEO_ANSWER], chunk_size=4, delay=0.05)

        events = await _collect(
            _orchestrator(points_service, client, timeout_seconds=0.1).stream(
                AnalysisRequest(user_id=user.id, prompt="check")
            )
        )

        assert events[-1].event == "error"
        assert events[-1].data["message_code"] == MessageCode.AI_GENERATION_FAILED
        assert events[-1].data["details"]["reason"] == "timeout"
        assert client.closed_streams == 1
        assert await points_service.get_balance(user.id) == 100

    async def test_unexpected_failure_becomes_internal_error_event(self, user):
        class BrokenPoints:
            async def get_balance(self, user_id):
                raise RuntimeError("database went away")

        client = ScriptedModelClient([VALID_VIDEO_ANSWER])

        events = await _collect(
            AnalysisOrchestrator(BrokenPoints(), client).stream(
                AnalysisRequest(user_id=user.id, prompt="check")
            )
        )

        assert [e.event for e in events] == ["error"]
        assert events[0].data["message_code"] == MessageCode.INTERNAL_ERROR
        assert events[0].data["details"] == {"error_type": "RuntimeError"}
