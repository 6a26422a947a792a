"""Runtime configuration based on environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiSettings(BaseModel):
    base_url: AnyHttpUrl = Field(
        default="https://probeops.com/api",
        description="Backend API root; every endpoint path is joined onto it.",
    )
    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)


class StorageSettings(BaseModel):
    profile_dir: Path = Field(
        default=Path.home() / ".probeops",
        description="Directory holding the persisted session for this profile.",
    )
    session_file: str = Field(default="session.json", min_length=1)

    @property
    def session_path(self) -> Path:
        return self.profile_dir.expanduser() / self.session_file


class RateLimitSettings(BaseModel):
    refresh_interval_seconds: int = Field(default=300, ge=1)
    approaching_threshold_percent: int = Field(default=80, ge=1, le=100)


class RouteSettings(BaseModel):
    login_path: str = "/auth"
    default_path: str = "/"

    @field_validator("login_path", "default_path")
    @classmethod
    def _ensure_leading_slash(cls, value: str) -> str:
        value = value.strip()
        return value if value.startswith("/") else f"/{value}"


class ProbeOpsSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PROBEOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    default_language: str = "en"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    api: ApiSettings = Field(default_factory=ApiSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    routes: RouteSettings = Field(default_factory=RouteSettings)


@lru_cache
def get_settings() -> ProbeOpsSettings:
    """Return cached settings instance."""

    return ProbeOpsSettings()


__all__ = [
    "ApiSettings",
    "ProbeOpsSettings",
    "RateLimitSettings",
    "RouteSettings",
    "StorageSettings",
    "get_settings",
]
