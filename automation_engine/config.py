from __future__ import annotations

"""Runtime configuration for the automation engine."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine and service settings, read from ``AUTOMATION_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOMATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    autosave_debounce_seconds: float = Field(
        default=3.0, ge=0.0, description="Quiet period before an autosave fires"
    )
    history_limit: int = Field(default=50, ge=1, description="Undo/redo depth")
    node_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Per-node timeout for local runs"
    )
    max_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Cap for delay nodes in local runs"
    )
    require_clean_for_test: bool = Field(
        default=True, description="Block test runs while there are unsaved changes"
    )
    log_level: str = Field(default="INFO", description="Service log level")
    host: str = Field(default="127.0.0.1", description="Bind address when run directly")
    port: int = Field(default=8000, description="Bind port when run directly")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]
