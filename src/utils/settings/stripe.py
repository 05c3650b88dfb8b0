"""Stripe settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr


class StripeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    STRIPE_WEBHOOK_SECRET: str = "whsec_test_webhook_secret"
    STRIPE_SECRET_KEY: SecretStr = SecretStr("sk_test_stripe_secret_key")

    STRIPE_PRICE_POINTS_STARTER_EUR: str = "price_points_starter"
    STRIPE_PRICE_POINTS_STANDARD_EUR: str = "price_points_standard"
    STRIPE_PRICE_POINTS_PROFESSIONAL_EUR: str = "price_points_professional"
    STRIPE_PRICE_POINTS_ENTERPRISE_EUR: str = "price_points_enterprise"

    CHECKOUT_SUCCESS_URL: str = "http://localhost:5173/?checkout=success"
    CHECKOUT_CANCEL_URL: str = "http://localhost:5173/pricing"
