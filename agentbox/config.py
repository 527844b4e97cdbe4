"""Application settings using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Sandbox configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "agentbox"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ==========================================================================
    # Sandbox
    # ==========================================================================
    sandbox_backend: Literal["local", "remote"] = "local"
    sandbox_id: str | None = None
    sandbox_workspace_path: str | None = None
    sandbox_timeout_seconds: float = 300
    sandbox_command_timeout_seconds: float = 120
    sandbox_max_lifetime_seconds: float = 60 * 60  # 1 hour
    sandbox_auto_stop_delay_seconds: float | None = None
    sandbox_ports: list[int] = Field(default_factory=list)
    sandbox_runtime: str | None = None
    sandbox_vcpus: int | None = None

    # ==========================================================================
    # Remote container service (E2B)
    # ==========================================================================
    e2b_api_key: SecretStr | None = None

    # ==========================================================================
    # Redis (heartbeat store shared by every caller of a remote sandbox)
    # ==========================================================================
    redis_url: RedisDsn | None = None

    # ==========================================================================
    # Git
    # ==========================================================================
    github_token: SecretStr | None = None
    git_author_name: str = "agentbox"
    git_author_email: str = "agentbox@users.noreply.github.com"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
