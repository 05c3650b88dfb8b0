"""Analysis API schemas."""

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel

from src.modules.analysis.service_types import AnalysisMode, ServiceType


class AnalysisGenerateRequest(BaseModel):
    """Body accepted by the generate endpoints. Keys are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt: str = Field(min_length=1)
    service_type: ServiceType = ServiceType.VIDEO
    mode: AnalysisMode = AnalysisMode.STANDARD
    model: str | None = None
    system_instruction: str | None = None
    video_url: HttpUrl | None = None
    is_batch: bool = False
    enable_google_search: bool = False

    @field_validator("service_type", mode="before")
    @classmethod
    def coerce_service_type(cls, value):
        return ServiceType(value) if value else ServiceType.VIDEO

    @field_validator("mode", mode="before")
    @classmethod
    def coerce_mode(cls, value):
        # Anything other than deep runs as a standard analysis
        return AnalysisMode.DEEP if value == AnalysisMode.DEEP.value else AnalysisMode.STANDARD


class UsageMetadataModel(BaseModel):
    promptTokenCount: int
    candidatesTokenCount: int
    totalTokenCount: int


class PointsChargeModel(BaseModel):
    deducted: int
    costInPoints: int
    newBalance: int
    isDeep: bool


class AnalysisResponse(BaseModel):
    text: str
    usageMetadata: UsageMetadataModel
    points: PointsChargeModel


class ReportSynthesisRequest(BaseModel):
    prompt: str = Field(min_length=1)


class ReportSynthesisResponse(BaseModel):
    report: str
