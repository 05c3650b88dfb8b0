from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Use plain string here so tests can sign tokens with the same value
    JWT_SECRET: str = "dev-jwt-secret-change-me"
    JWT_AUDIENCE: str | None = None
