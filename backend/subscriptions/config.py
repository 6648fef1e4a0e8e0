"""
Application configuration using pydantic-settings.
Loads environment variables from .env file.

Nested config groups (SubscriptionConfig, StripeConfig, StoreConfig) are
env-overridable via the double-underscore delimiter, e.g.:
    SUBSCRIPTION__TRIAL_DAYS=14
    SUBSCRIPTION__YEARLY_CHARGE_OVERRIDE=1100
    STRIPE__SECRET_KEY=sk_live_...
    STORE__BACKEND=supabase
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SubscriptionConfig(BaseModel):
    """Entitlement lifecycle and pricing tunables."""

    trial_days: int = Field(default=10, ge=0)
    grace_days: int = Field(default=3, ge=0)

    # List prices shown to the customer, in the home currency
    monthly_price: Decimal = Decimal("5")
    yearly_price: Decimal = Decimal("110")
    display_currency: str = "bhd"

    # Settlement currency of the Stripe account
    charge_currency: str = "aed"
    # display price × rate, unless a fixed override is set for the plan
    conversion_rate: Decimal = Decimal("9.75")
    monthly_charge_override: Decimal | None = None
    yearly_charge_override: Decimal | None = None

    product_name: str = "INTERMID Cheque Software"


class StripeConfig(BaseModel):
    """Stripe Checkout configuration."""

    secret_key: str = ""
    return_url: str = (
        "http://localhost:5173/app/subscription?return=1&session_id={CHECKOUT_SESSION_ID}"
    )
    request_timeout_seconds: int = 30
    max_network_retries: int = 0


class StoreConfig(BaseModel):
    """Where subscription records live."""

    backend: Literal["memory", "json", "supabase"] = "memory"
    json_path: str = "data/subscriptions.json"
    records_table: str = "subscriptions"
    profiles_table: str = "user_profiles"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Supabase (auth + durable store)
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # App Settings
    debug: bool = False
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Nested config groups (env-overridable via SECTION__KEY format)
    subscription: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    stripe: StripeConfig = Field(default_factory=StripeConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
