"""Configuration settings for dokan_sync."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dokan_sync.utils import get_default_db_path


class Settings(BaseSettings):
    """Settings loaded from ``DOKAN_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="DOKAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )

    # Supabase
    supabase_url: str | None = None
    supabase_key: str | None = None  # Publishable (anon) key; RLS scopes rows per user

    # Tenant partition for every cached record and mutation
    owner_scope: str | None = None

    # Local store
    db_path: Path = Field(default_factory=get_default_db_path)

    # Sync triggers
    sync_interval_seconds: float = 300.0  # Safety-net interval while online
    reconnect_debounce_seconds: float = 1.0  # Delay after an online transition
    probe_interval_seconds: float = 15.0
    probe_timeout_seconds: float = 5.0

    # Retry observability (mutations are retried forever)
    warn_after_attempts: int = 5
    hold_record_on_failure: bool = False

    log_level: str = "INFO"

    @field_validator("sync_interval_seconds", "probe_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("reconnect_debounce_seconds", "probe_timeout_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @field_validator("supabase_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
