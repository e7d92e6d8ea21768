"""
Configuration and settings for the family tree backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Hosted auth service (Supabase GoTrue)
    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)

    # Contact form mail delivery (Resend)
    resend_api_key: Optional[str] = Field(default=None)
    contact_sender: str = Field(default="onboarding@resend.dev")
    contact_recipient: Optional[str] = Field(default=None)

    # Outbound HTTP calls to the auth and mail services
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Login lockout and session policy
    lockout_threshold: int = Field(default=5, ge=1)
    lockout_hours: int = Field(default=24, ge=1)
    session_ttl_seconds: int = Field(default=3600, ge=60)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
