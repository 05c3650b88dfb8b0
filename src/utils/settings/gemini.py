"""Gemini model settings configuration."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    GEMINI_API_KEY: SecretStr = SecretStr("")
    GEMINI_DEFAULT_MODEL: str = "gemini-2.5-flash"
    GEMINI_TIMEOUT_SECONDS: int = 900
    GEMINI_TEMPERATURE: float = 0.7
    GEMINI_MAX_OUTPUT_TOKENS: int = 20000
    GEMINI_MAX_OUTPUT_TOKENS_DEEP: int = 65536
    GEMINI_REPORT_TEMPERATURE: float = 0.8
    GEMINI_REPORT_MAX_OUTPUT_TOKENS: int = 16000
