"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineMatch", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    trakt_client_id: str | None = Field(default=None, alias="TRAKT_CLIENT_ID")
    trakt_api_url: HttpUrl = Field(
        default="https://api.trakt.tv", alias="TRAKT_API_URL"
    )

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )
    ai_suggestion_limit: int = Field(
        default=20, alias="AI_SUGGESTION_LIMIT", ge=1, le=50
    )

    default_region: str = Field(default="US", alias="DEFAULT_REGION")

    sync_debounce_seconds: float = Field(
        default=1.0, alias="SYNC_DEBOUNCE_SECONDS", gt=0
    )
    sync_retry_limit: int = Field(default=3, alias="SYNC_RETRY_LIMIT", ge=0, le=10)
    sync_retry_base_delay: float = Field(
        default=1.0, alias="SYNC_RETRY_BASE_DELAY", ge=0
    )
    search_debounce_seconds: float = Field(
        default=0.5, alias="SEARCH_DEBOUNCE_SECONDS", ge=0
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinematch.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("default_region", mode="before")
    @classmethod
    def _normalise_region(cls, value: object) -> str:
        """Accept region codes case-insensitively."""

        if value is None or value == "":
            return "US"
        region = str(value).strip().upper()
        if len(region) != 2 or not region.isalpha():
            raise ValueError("DEFAULT_REGION must be a two-letter country code")
        return region

    @field_validator("tmdb_api_key", "trakt_client_id", "openrouter_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
