"""Application settings loaded from environment variables and .env files."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from socialab_studio.config.constants import (
    ALLOWED_CHAT_MODELS,
    DEFAULT_CHAT_MODEL,
    EXTERNAL_EDIT_TOOLS,
    Limits,
    Timeouts,
)


class Settings(BaseSettings):
    """Runtime configuration for the assistant.

    Values come from the process environment first, then from a local
    ``.env`` file. Unknown variables are ignored.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    socialab_chat_endpoint: str = Field(
        default="http://localhost:3002/api/chat",
        description="URL of the agent chat endpoint",
    )
    socialab_api_token: SecretStr | None = Field(
        default=None, description="Bearer token sent to the agent endpoint"
    )
    socialab_chat_model: str = Field(default=DEFAULT_CHAT_MODEL)
    socialab_allowed_chat_models: list[str] = Field(
        default_factory=lambda: list(ALLOWED_CHAT_MODELS)
    )
    socialab_external_edit_tools: list[str] = Field(
        default_factory=lambda: list(EXTERNAL_EDIT_TOOLS)
    )
    socialab_connect_timeout: float = Field(default=Timeouts.STREAM_CONNECT, gt=0)
    socialab_read_timeout: float = Field(default=Timeouts.STREAM_READ, gt=0)
    socialab_stream_max_retries: int = Field(default=Limits.MAX_STREAM_RETRIES, ge=1, le=10)
    socialab_notice_ttl: float = Field(default=Timeouts.NOTICE_TTL, gt=0)
    socialab_max_messages: int = Field(default=Limits.MAX_MESSAGES, ge=1)
    socialab_intact_recent_messages: int = Field(default=Limits.INTACT_RECENT_MESSAGES, ge=0)
    socialab_max_text_length: int = Field(default=Limits.MAX_TEXT_LENGTH, ge=1)
    socialab_auto_resume: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("socialab_chat_endpoint")
    @classmethod
    def _check_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Chat endpoint must be an http(s) URL")
        return v.rstrip("/")

    def auth_headers(self) -> dict[str, str]:
        """Headers for authenticating against the agent endpoint."""
        if self.socialab_api_token is None:
            return {}
        return {"Authorization": f"Bearer {self.socialab_api_token.get_secret_value()}"}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache so the next call re-reads the environment."""
    get_settings.cache_clear()
