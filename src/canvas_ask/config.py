"""
canvas-ask Configuration

Settings are loaded from:
1. Environment variables (prefixed with CANVAS_ASK_)
2. ~/.canvas-ask/.env file

Key settings:
- CANVAS_ASK_VAULT_PATH: Root folder of the note vault (default: current directory)
- CANVAS_ASK_ALLOW_API_CALLS: Must be true before any canvas content leaves the machine
- CANVAS_ASK_OPENAI_API_KEY: Bearer token for the chat completions endpoint
- CANVAS_ASK_OPENAI_BASE_URL: Endpoint origin (default: https://api.openai.com)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from canvas_ask.core.prompts import DEFAULT_SYSTEM_PROMPT
from canvas_ask.lib.llm import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4o-mini"
MIN_RELATED_RESULTS = 3
MAX_RELATED_RESULTS = 12
MAX_ASK_HOPS = 12
MAX_EXPORT_HOPS = 10


def normalize_base_url(value: Optional[str]) -> str:
    """Normalize an API base URL to its origin.

    Blank values fall back to the default. A missing scheme is assumed to be
    https. Plain http is accepted but logged, since the key travels with it.

    Raises:
        ValueError: If the value cannot be parsed as a URL
    """
    raw = (value or "").strip()
    if not raw:
        return DEFAULT_BASE_URL

    if "://" not in raw:
        logger.info("Assuming https:// prefix for API base URL")
        raw = f"https://{raw}"

    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Invalid API base URL: {value!r}. Example: {DEFAULT_BASE_URL}")
    if parts.scheme == "http":
        logger.warning("API base URL uses insecure http:. Use https: to protect your key.")

    return f"{parts.scheme}://{parts.netloc}".rstrip("/")


class Settings(BaseSettings):
    """canvas-ask configuration settings."""

    vault_path: Path = Field(default_factory=Path.cwd)

    # Remote completion endpoint
    allow_api_calls: bool = False
    openai_api_key: str | None = None
    openai_base_url: str = DEFAULT_BASE_URL
    openai_model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_tokens: int = 1200
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Retry/timeout policy
    request_timeout: float = Field(30.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    retry_base_delay: float = Field(0.8, ge=0)
    retry_max_delay: float = Field(6.0, ge=0)
    retry_min_delay: float = Field(0.2, ge=0)

    # Context and search
    context_char_limit_per_node: int = 2000
    output_folder: str = "Ask Canvas"
    top_related_results: int = 8
    ask_hop_limit: int = 3
    export_hop_limit: int = MAX_EXPORT_HOPS

    model_config = SettingsConfigDict(
        env_prefix="CANVAS_ASK_",
        env_file=Path.home() / ".canvas-ask" / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("vault_path", mode="before")
    @classmethod
    def _normalize_vault_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            return Path.cwd()
        return Path(value).expanduser().resolve()

    @field_validator("openai_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Optional[str]) -> str:
        return normalize_base_url(value)

    @field_validator("openai_model", mode="before")
    @classmethod
    def _default_model(cls, value: Optional[str]) -> str:
        cleaned = (value or "").strip()
        return cleaned or DEFAULT_MODEL

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _strip_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("output_folder", mode="before")
    @classmethod
    def _strip_folder(cls, value: Optional[str]) -> str:
        return (value or "").strip().strip("/")

    @field_validator("top_related_results", mode="before")
    @classmethod
    def _clamp_related(cls, value: int | str | None) -> int:
        if value in (None, ""):
            return 8
        return max(MIN_RELATED_RESULTS, min(MAX_RELATED_RESULTS, int(value)))

    @field_validator("ask_hop_limit", mode="before")
    @classmethod
    def _clamp_ask_hops(cls, value: int | str) -> int:
        return max(0, min(MAX_ASK_HOPS, int(value)))

    @field_validator("export_hop_limit", mode="before")
    @classmethod
    def _clamp_export_hops(cls, value: int | str) -> int:
        return max(0, min(MAX_EXPORT_HOPS, int(value)))

    @property
    def is_api_configured(self) -> bool:
        """Check if remote completions are both allowed and authenticated."""
        return self.allow_api_calls and bool(self.openai_api_key)

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used by the completion client."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            min_delay=self.retry_min_delay,
            timeout=self.request_timeout,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings."""
    return Settings()


def reload_settings() -> Settings:
    """Clear cached settings (useful for tests) and reload."""
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings", "normalize_base_url"]
