"""Runtime configuration for the SiteRAG services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="siterag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    upload_dir: Path = Path("./uploads")

    # Document normalization
    text_section_size: int = 50
    text_single_chunk_max_lines: int = 10
    currency_symbol: str = "$"

    # Generation backend
    generator_backend: Literal["template", "openai"] = "template"
    generator_model: str = "gpt-4o"
    generator_temperature: float = 0.7
    openai_api_key: str | None = None
    openai_base_url: str | None = None

    # Channel history (Slack)
    slack_bot_token: str | None = None
    slack_api_url: str = "https://slack.com/api"
    slack_history_limit: int = 100

    # Task tracker (Asana)
    asana_access_token: str | None = None
    asana_api_url: str = "https://app.asana.com/api/1.0"
    asana_include_completed: bool = True

    # Source attribution
    include_source_details: bool = True
    include_user_in_source: bool = True
    include_date_in_source: bool = True

    # Deployment-wide instruction template; conversation overrides win
    response_template: str | None = None

    # Streaming pacing
    stream_large_token_chars: int = 20
    stream_words_per_group: int = 3
    stream_pacing_interval_seconds: float = 0.01
    stream_queue_size: int = 64

    # API & upload safety
    allowed_extensions: tuple[str, ...] | str = (".pdf", ".xlsx", ".xlsm", ".txt", ".csv", ".md", ".rtf", ".docx")
    max_files: int = 12
    max_upload_size_mb: int = 25  # per file

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    rate_limit_requests: int = 120  # per window per client
    rate_limit_window_seconds: int = 60

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_extensions
        if isinstance(value, tuple):
            return value
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return tuple(parts) if parts else (".pdf", ".xlsx", ".txt")
        return (".pdf", ".xlsx", ".txt")

    @property
    def attribution_required(self) -> bool:
        return self.include_source_details


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
