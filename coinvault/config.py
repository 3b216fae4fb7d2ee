from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class Settings(BaseSettings):
    """Runtime configuration driven by environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", extra="ignore")

    app_env: Literal["dev", "stage", "prod"] = Field("dev", alias="COINVAULT_ENV")
    log_level: str = Field("info", alias="COINVAULT_LOG_LEVEL")
    log_json: bool = Field(True, alias="COINVAULT_LOG_JSON")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        level = str(value or "info").strip().lower()
        return level if level in _LOG_LEVELS else "info"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
