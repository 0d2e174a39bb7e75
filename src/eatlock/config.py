"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    storage_bucket: str = "images"
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    openai_reasoning_effort: str | None = None
    openai_store: bool = False
    openfoodfacts_base_url: str = "https://world.openfoodfacts.org"
    enforce_limits: bool = False
    disable_daily_limits: bool = False
    verify_daily_limit: int = 30
    compare_daily_limit: int = 10
    nutrition_daily_limit: int = 10
    dev_bypass_user_ids: str | None = None
    dev_bypass_token: str | None = None
    queue_max_retries: int = 5
    stale_upload_ttl_seconds: int = 30 * 60
    stale_upload_sweep_interval_seconds: int = 15 * 60
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_user_ids(raw: str | None) -> frozenset[str]:
    """Parse a comma-separated list of user ids from env."""
    if raw is None:
        return frozenset()
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return frozenset()
    return frozenset(chunk.strip() for chunk in cleaned.split(",") if chunk.strip())
