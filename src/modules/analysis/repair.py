"""Best-effort recovery parser for malformed model JSON."""

import json
from typing import Any, Iterator

from src.modules.analysis.json_scanner import (
    OPENERS,
    closing_sequence,
    ends_with_dangling_escape,
    escape_control_chars_in_strings,
    has_unterminated_string,
    match_balanced,
    remove_trailing_commas,
    root_opener,
    strip_code_fences,
    strip_comments,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

STAGE_AS_IS = 1
STAGE_FENCES_AND_COMMAS = 2
STAGE_CONTROL_CHARS = 3
STAGE_COMMENTS = 4
STAGE_BALANCED_SPAN = 5
STAGE_CLOSED_STRUCTURE = 6
STAGE_CLOSED_STRING = 7


class UnrepairableJsonError(ValueError):
    """Raised when no repair stage yields parseable JSON."""

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt


class RepairParser:
    """Parses text that should be JSON but may be decorated, truncated or dirty.

    Stages run from least to most destructive and each stage is only tried
    once the previous one failed:

    1. parse as-is
    2. strip code fences and trailing commas
    3. escape raw control characters inside strings
    4. strip ``//`` and ``/* */`` comments
    5. slice the balanced root object (an array only when the text starts with one)
    6. append the closers for every unclosed object/array
    7. close an unterminated string, then rebalance

    Stages are cumulative, so stage 5 works on the output of stage 4.
    """

    def parse(self, text: str) -> Any:
        return self.parse_with_stage(text)[0]

    def parse_with_stage(self, text: str) -> tuple[Any, int]:
        """Parse ``text`` and also report which stage succeeded."""
        if not isinstance(text, str):
            raise UnrepairableJsonError(
                f"Expected text, got {type(text).__name__}"
            )

        for stage, candidate in self._candidates(text):
            try:
                parsed = json.loads(candidate)
            except (ValueError, RecursionError):
                continue
            if stage > STAGE_AS_IS:
                logger.debug("Repaired JSON", stage=stage, length=len(text))
            return parsed, stage

        raise UnrepairableJsonError(
            "No repair stage produced valid JSON", excerpt=text[:200]
        )

    def _candidates(self, text: str) -> Iterator[tuple[int, str]]:
        yield STAGE_AS_IS, text

        cleaned = remove_trailing_commas(strip_code_fences(text))
        yield STAGE_FENCES_AND_COMMAS, cleaned

        escaped = escape_control_chars_in_strings(cleaned)
        yield STAGE_CONTROL_CHARS, escaped

        uncommented = strip_comments(escaped)
        yield STAGE_COMMENTS, uncommented

        start = root_opener(uncommented)
        if start == -1:
            return

        opener = uncommented[start]
        end = match_balanced(uncommented, opener, OPENERS[opener], start)
        if end != -1:
            yield STAGE_BALANCED_SPAN, remove_trailing_commas(
                uncommented[start : end + 1]
            )

        tail = uncommented[start:]
        yield STAGE_CLOSED_STRUCTURE, remove_trailing_commas(
            tail + closing_sequence(tail)
        )

        if has_unterminated_string(tail):
            if ends_with_dangling_escape(tail):
                tail = tail[:-1]
            closed = tail + '"'
            yield STAGE_CLOSED_STRING, remove_trailing_commas(
                closed + closing_sequence(closed)
            )
