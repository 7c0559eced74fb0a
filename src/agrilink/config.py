"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_anon_key: str
    storage_path: Path = Path(".agrilink/storage.json")
    log_level: str = "INFO"
    otp_first_cooldown_seconds: int = 60
    otp_resend_cooldown_seconds: int = 6 * 60 * 60
    default_country_code: str = "255"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
