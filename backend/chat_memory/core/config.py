from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List

from pydantic import Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Inclusive bounds for numeric settings; values outside fall back to the default.
_INT_RANGES: dict[str, tuple[int, int]] = {
    "memory_threshold": (1, 100),
    "recent_messages_limit": (1, 20),
    "session_timeout_hours": (1, 168),
    "max_sessions": (1, 10000),
    "cleanup_interval_minutes": (1, 1440),
    "corruption_check_interval_minutes": (1, 1440),
}

SUPPORTED_SUMMARY_PROVIDERS = ("gemini", "ollama", "off")


class Settings(BaseSettings):
    """Memory service settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:3000,http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    memory_threshold: int = Field(default=10, alias="MEMORY_THRESHOLD")
    recent_messages_limit: int = Field(default=6, alias="RECENT_MESSAGES_LIMIT")
    session_timeout_hours: int = Field(default=24, alias="SESSION_TIMEOUT_HOURS")
    max_sessions: int = Field(default=1000, alias="MAX_SESSIONS")
    cleanup_interval_minutes: int = Field(default=60, alias="CLEANUP_INTERVAL_MINUTES")
    corruption_check_interval_minutes: int = Field(
        default=120, alias="CORRUPTION_CHECK_INTERVAL_MINUTES"
    )

    summary_provider: str = Field(default="gemini", alias="SUMMARY_PROVIDER")
    summary_model: str = Field(default="gemini-2.5-flash", alias="SUMMARY_MODEL")
    summary_timeout_sec: float = Field(default=30, alias="SUMMARY_TIMEOUT_SEC")
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com", alias="GEMINI_BASE_URL"
    )
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    model_config = SettingsConfigDict(
        env_file=(".env", "backend/.env"), extra="ignore", populate_by_name=True
    )

    @field_validator(*_INT_RANGES, mode="wrap")
    @classmethod
    def _fallback_out_of_range(cls, value: Any, handler, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        low, high = _INT_RANGES[info.field_name]
        try:
            parsed = handler(value)
        except ValidationError:
            parsed = None
        if parsed is None or not low <= parsed <= high:
            logger.warning(
                "Invalid %s=%r (expected %d-%d); using default %d",
                info.field_name,
                value,
                low,
                high,
                default,
            )
            return default
        return parsed

    @field_validator("summary_timeout_sec", mode="wrap")
    @classmethod
    def _fallback_timeout(cls, value: Any, handler, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = handler(value)
        except ValidationError:
            parsed = None
        if parsed is None or parsed <= 0:
            logger.warning("Invalid SUMMARY_TIMEOUT_SEC=%r; using default %s", value, default)
            return default
        return parsed

    @field_validator("summary_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> str:
        provider = str(value or "").strip().lower()
        if provider not in SUPPORTED_SUMMARY_PROVIDERS:
            logger.warning("Unknown SUMMARY_PROVIDER=%s; fallback to off", value)
            return "off"
        return provider

    @model_validator(mode="after")
    def _check_recent_below_threshold(self) -> "Settings":
        if self.recent_messages_limit < self.memory_threshold:
            return self
        default_limit = type(self).model_fields["recent_messages_limit"].default
        replacement = min(default_limit, self.memory_threshold - 1)
        if replacement < 1:
            self.memory_threshold = type(self).model_fields["memory_threshold"].default
            replacement = min(default_limit, self.memory_threshold - 1)
        logger.warning(
            "RECENT_MESSAGES_LIMIT=%d must be below MEMORY_THRESHOLD=%d; using %d",
            self.recent_messages_limit,
            self.memory_threshold,
            replacement,
        )
        self.recent_messages_limit = replacement
        return self

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                logger.warning("CORS_ORIGINS is not valid JSON; parsing as comma list")
        return [item.strip() for item in raw.split(",") if item.strip()]

    def memory_limits(self) -> "MemoryLimits":
        return MemoryLimits(
            memory_threshold=self.memory_threshold,
            recent_messages_limit=self.recent_messages_limit,
            session_timeout_hours=self.session_timeout_hours,
            max_sessions=self.max_sessions,
        )


@dataclass(frozen=True)
class MemoryLimits:
    """Thresholds shared by the session store and the memory manager."""

    memory_threshold: int = 10
    recent_messages_limit: int = 6
    session_timeout_hours: float = 24
    max_sessions: int = 1000

    def __post_init__(self) -> None:
        if self.recent_messages_limit < 1:
            raise ValueError("recent_messages_limit must be at least 1")
        if self.recent_messages_limit >= self.memory_threshold:
            raise ValueError("recent_messages_limit must be less than memory_threshold")
        if self.session_timeout_hours <= 0 or self.max_sessions < 1:
            raise ValueError("session_timeout_hours and max_sessions must be positive")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
