"""Decides whether a model answer is complete enough to bill for."""

from dataclasses import dataclass, field
from typing import Any, Callable

from src.api.core.messages import MessageCode
from src.modules.analysis.json_scanner import (
    escape_control_chars_in_strings,
    escape_interior_quotes,
    extract_fenced_block,
    find_json_span,
    has_unterminated_string,
    remove_trailing_commas,
    strip_code_fences,
    strip_comments,
)
from src.modules.analysis.repair import (
    STAGE_CLOSED_STRING,
    RepairParser,
    UnrepairableJsonError,
)
from src.modules.analysis.service_types import ServiceType
from src.utils.logger import get_logger

logger = get_logger(__name__)

MIN_RESPONSE_LENGTH = 10
EXCERPT_LENGTH = 200
TRUNCATION_MARKERS = ("...", "…")


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating one model answer."""

    valid: bool
    parsed: dict | None = None
    code: MessageCode | None = None
    reason: str | None = None
    diagnostics: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, parsed: dict) -> "ValidationOutcome":
        return cls(valid=True, parsed=parsed)

    @classmethod
    def fail(
        cls, code: MessageCode, reason: str, **diagnostics: Any
    ) -> "ValidationOutcome":
        return cls(valid=False, code=code, reason=reason, diagnostics=diagnostics)


def _is_text_longer_than(value: Any, length: int) -> bool:
    return isinstance(value, str) and len(value.strip()) > length


def _is_non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _check_video(data: dict) -> str | None:
    if not _is_text_longer_than(data.get("summary"), 10):
        return "summary is missing or too short"

    claims = data.get("factualClaims") or data.get("claims") or data.get("quotes")
    has_assessment = (
        data.get("overallAssessment") not in (None, "")
        and data.get("detailedMetrics") is not None
    )
    if (
        _is_non_empty_list(claims)
        or _is_non_empty_list(data.get("manipulationTechniques"))
        or has_assessment
    ):
        return None
    return "no claims, manipulation techniques or assessment metrics"


def _check_article(data: dict) -> str | None:
    if not _is_text_longer_than(data.get("title"), 5):
        return "title is missing or too short"
    if not _is_text_longer_than(data.get("siteName"), 0):
        return "siteName is missing"
    if not _is_text_longer_than(data.get("summary"), 20):
        return "summary is missing or too short"
    return None


def _check_social_post(data: dict) -> str | None:
    if not _is_text_longer_than(data.get("title"), 5):
        return "title is missing or too short"
    if not _is_text_longer_than(data.get("platform"), 0):
        return "platform is missing"
    if not _is_text_longer_than(data.get("summary"), 20):
        return "summary is missing or too short"
    return None


def _check_comments(data: dict) -> str | None:
    if not _is_text_longer_than(data.get("summary"), 20):
        return "summary is missing or too short"
    if data.get("totalComments") is None:
        return "totalComments is missing"
    return None


COMPLETENESS_RULES: dict[ServiceType, Callable[[dict], str | None]] = {
    ServiceType.VIDEO: _check_video,
    ServiceType.LINK: _check_article,
    ServiceType.SOCIAL_POST: _check_social_post,
    ServiceType.SOCIAL_FULL_AUDIT: _check_social_post,
    ServiceType.COMMENTS: _check_comments,
}


def _normalize(candidate: str) -> str:
    text = remove_trailing_commas(candidate)
    text = strip_comments(text)
    text = escape_control_chars_in_strings(text)
    return escape_interior_quotes(text)


def _as_object(value: Any) -> dict | None:
    """The parsed answer as an object, unwrapping a one-object array."""
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        return value[0]
    return value if isinstance(value, dict) else None


def _span_candidates(text: str, span: tuple[int, int]) -> list[tuple[str, bool]]:
    """Slices of ``text`` for a ``find_json_span`` result, each with a truncation flag."""
    start, end = span
    if end != -1:
        return [(text[start : end + 1], False)]

    tail = text[start:]
    truncated = tail.rstrip().endswith(",") or has_unterminated_string(tail)
    candidates = [(tail, truncated)]
    last_closer = max(text.rfind("}"), text.rfind("]"))
    if last_closer > start:
        candidates.append((text[start : last_closer + 1], truncated))
    return candidates


class ResponseValidator:
    """Cleans, extracts, parses and checks a raw model answer."""

    def __init__(self, parser: RepairParser | None = None):
        self.parser = parser or RepairParser()

    def validate(
        self, raw_text: str | None, service_type: ServiceType | str
    ) -> ValidationOutcome:
        text = raw_text.strip() if isinstance(raw_text, str) else ""
        if len(text) < MIN_RESPONSE_LENGTH:
            return ValidationOutcome.fail(
                MessageCode.AI_EMPTY_RESPONSE,
                "response is empty or too short",
                length=len(text),
            )

        if "{" not in text and "[" not in text:
            return ValidationOutcome.fail(
                MessageCode.AI_INVALID_FORMAT,
                "response does not contain JSON",
                excerpt=text[:EXCERPT_LENGTH],
            )

        candidates = self._extract(text)

        chosen = None
        for candidate, truncated in candidates:
            result = self._parse(candidate)
            if result is None:
                continue
            if chosen is None or _as_object(result[0]) is not None:
                chosen = (*result, truncated)
            if _as_object(chosen[0]) is not None:
                break

        if chosen is None:
            return ValidationOutcome.fail(
                MessageCode.AI_JSON_PARSE_ERROR,
                "all repair stages failed",
                excerpt=candidates[0][0][:EXCERPT_LENGTH],
            )

        value, stage, truncated = chosen
        parsed = _as_object(value)
        if parsed is None:
            return ValidationOutcome.fail(
                MessageCode.AI_INCOMPLETE_RESPONSE,
                f"expected an object, got {type(value).__name__}",
            )

        if truncated or stage == STAGE_CLOSED_STRING:
            return ValidationOutcome.fail(
                MessageCode.AI_INCOMPLETE_RESPONSE,
                "response looks truncated",
                repair_stage=stage,
            )

        summary = parsed.get("summary")
        if isinstance(summary, str) and summary.rstrip().endswith(TRUNCATION_MARKERS):
            return ValidationOutcome.fail(
                MessageCode.AI_INCOMPLETE_RESPONSE,
                "summary ends with an ellipsis",
            )

        rule = COMPLETENESS_RULES.get(self._resolve(service_type), _check_article)
        missing = rule(parsed)
        if missing:
            logger.info(
                "Incomplete AI response",
                service_type=str(service_type),
                reason=missing,
                keys=sorted(parsed.keys())[:20],
            )
            return ValidationOutcome.fail(
                MessageCode.AI_INCOMPLETE_RESPONSE, missing, repair_stage=stage
            )

        return ValidationOutcome.ok(parsed)

    @staticmethod
    def _resolve(service_type: ServiceType | str) -> ServiceType | None:
        try:
            return ServiceType(service_type)
        except ValueError:
            return None

    def _parse(self, candidate: str) -> tuple[Any, int] | None:
        for attempt in (_normalize(candidate), candidate):
            try:
                return self.parser.parse_with_stage(attempt)
            except UnrepairableJsonError:
                continue
        return None

    @staticmethod
    def _extract(text: str) -> list[tuple[str, bool]]:
        """Candidate JSON slices in preference order, each with a truncation flag."""
        fenced = extract_fenced_block(text)
        if fenced and ("{" in fenced or "[" in fenced):
            return [(fenced, fenced.rstrip().endswith(","))]

        unfenced = strip_code_fences(text)
        span = find_json_span(unfenced)
        if span is None:
            return [(unfenced, False)]

        candidates = _span_candidates(unfenced, span)
        # A leading array may be citations; the object after it is the answer
        start = span[0]
        brace = unfenced.find("{")
        if unfenced[start] == "[" and brace > start:
            rest = unfenced[brace:]
            candidates.extend(_span_candidates(rest, find_json_span(rest)))
        return candidates
