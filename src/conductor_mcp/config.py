"""Configuration management for Conductor MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConductorSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    conductor_dir: Path = Field(default=Path("./conductor"), validation_alias="CONDUCTOR_DIR")
    repo_path: Path = Field(default=Path("."), validation_alias="CONDUCTOR_REPO_PATH")
    git_path: str | None = Field(default=None, validation_alias="CONDUCTOR_GIT_PATH")
    log_level: str = Field(default="INFO", validation_alias="CONDUCTOR_LOG_LEVEL")
    allow_forced_revert: bool = Field(
        default=True, validation_alias="CONDUCTOR_ALLOW_FORCED_REVERT"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CONDUCTOR_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("git_path", mode="before")
    @classmethod
    def _blank_git_path(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> ConductorSettings:
    """Return cached settings instance."""

    settings = ConductorSettings()
    settings.conductor_dir = settings.conductor_dir.expanduser().resolve()
    settings.repo_path = settings.repo_path.expanduser().resolve()
    return settings


__all__ = ["ConductorSettings", "get_settings"]
