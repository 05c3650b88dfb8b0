"""Gemini model client and the protocol the orchestrator depends on."""

from dataclasses import dataclass, replace
from typing import AsyncIterator, Protocol

from google import genai
from google.genai import types

from src.modules.analysis.service_types import AnalysisMode
from src.utils.logger import get_logger
from src.utils.settings.gemini import GeminiSettings

logger = get_logger(__name__)

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a professional fact-checker. Respond ONLY with valid JSON."
)
VIDEO_MIME_TYPE = "video/mp4"


@dataclass(frozen=True)
class UsageReport:
    """Token usage reported by the model for one generation."""

    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int | None = None

    def to_metadata(self) -> dict:
        return {
            "promptTokenCount": self.prompt_tokens,
            "candidatesTokenCount": self.output_tokens,
            "totalTokenCount": (
                self.total_tokens
                if self.total_tokens is not None
                else self.prompt_tokens + self.output_tokens
            ),
        }


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    mode: AnalysisMode = AnalysisMode.STANDARD
    model: str | None = None
    system_instruction: str | None = None
    video_url: str | None = None
    enable_google_search: bool = False
    json_response: bool = True
    temperature: float | None = None
    max_output_tokens: int | None = None

    @property
    def is_deep(self) -> bool:
        return self.mode == AnalysisMode.DEEP

    def with_instruction(self, instruction: str) -> "GenerationRequest":
        return replace(self, prompt=f"{self.prompt}\n\n{instruction}")


@dataclass(frozen=True)
class GenerationResult:
    text: str
    usage: UsageReport


@dataclass(frozen=True)
class GenerationChunk:
    text: str = ""
    usage: UsageReport | None = None
    is_tool_call: bool = False


class ModelClient(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResult: ...

    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[GenerationChunk]: ...


def _usage_from(metadata: types.GenerateContentResponseUsageMetadata | None) -> UsageReport | None:
    if metadata is None:
        return None
    return UsageReport(
        prompt_tokens=metadata.prompt_token_count or 0,
        output_tokens=metadata.candidates_token_count or 0,
        total_tokens=metadata.total_token_count,
    )


def _split_parts(response: types.GenerateContentResponse) -> tuple[str, bool]:
    """Concatenated text of the first candidate and whether it invoked a tool."""
    if not response.candidates:
        return "", False
    content = response.candidates[0].content
    if content is None or not content.parts:
        return "", False

    texts = []
    used_tool = False
    for part in content.parts:
        if part.text and not part.thought:
            texts.append(part.text)
        if part.function_call or part.executable_code or part.code_execution_result:
            used_tool = True
    return "".join(texts), used_tool


class GeminiModelClient:
    """Calls Gemini through the async ``google-genai`` client."""

    def __init__(
        self,
        settings: GeminiSettings | None = None,
        client: genai.Client | None = None,
    ):
        self.settings = settings or GeminiSettings()
        self.client = client or genai.Client(
            api_key=self.settings.GEMINI_API_KEY.get_secret_value()
        )

    def _contents(self, request: GenerationRequest) -> list[types.Content]:
        parts = []
        if request.video_url:
            parts.append(
                types.Part.from_uri(file_uri=request.video_url, mime_type=VIDEO_MIME_TYPE)
            )
        parts.append(types.Part.from_text(text=request.prompt))
        return [types.Content(role="user", parts=parts)]

    def _config(self, request: GenerationRequest) -> types.GenerateContentConfig:
        use_search = request.is_deep or request.enable_google_search
        tools = [types.Tool(google_search=types.GoogleSearch())] if use_search else None

        max_tokens = request.max_output_tokens or (
            self.settings.GEMINI_MAX_OUTPUT_TOKENS_DEEP
            if request.is_deep
            else self.settings.GEMINI_MAX_OUTPUT_TOKENS
        )
        temperature = (
            request.temperature
            if request.temperature is not None
            else self.settings.GEMINI_TEMPERATURE
        )

        # Grounding tools cannot be combined with a forced JSON mime type
        mime_type = "application/json" if request.json_response and not tools else None

        return types.GenerateContentConfig(
            system_instruction=request.system_instruction
            or (DEFAULT_SYSTEM_INSTRUCTION if request.json_response else None),
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type=mime_type,
            media_resolution=(
                types.MediaResolution.MEDIA_RESOLUTION_LOW if request.video_url else None
            ),
            tools=tools,
        )

    def _model(self, request: GenerationRequest) -> str:
        return request.model or self.settings.GEMINI_DEFAULT_MODEL

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        response = await self.client.aio.models.generate_content(
            model=self._model(request),
            contents=self._contents(request),
            config=self._config(request),
        )
        text, _ = _split_parts(response)
        return GenerationResult(
            text=text, usage=_usage_from(response.usage_metadata) or UsageReport()
        )

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[GenerationChunk]:
        stream = await self.client.aio.models.generate_content_stream(
            model=self._model(request),
            contents=self._contents(request),
            config=self._config(request),
        )
        async for response in stream:
            text, used_tool = _split_parts(response)
            yield GenerationChunk(
                text=text,
                usage=_usage_from(response.usage_metadata),
                is_tool_call=used_tool and not text,
            )
