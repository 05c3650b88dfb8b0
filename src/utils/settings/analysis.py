"""Analysis pipeline settings configuration."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalysisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ANALYSIS_MAX_RETRIES: int = 1
    ANALYSIS_PROGRESS_EVERY_CHUNKS: int = 5
    RATE_LIMIT_BACKEND: Literal["memory", "redis"] = "memory"
