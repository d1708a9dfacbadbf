"""Configuration settings for Ledgerly."""

import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes", "debug")


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = Field(default_factory=lambda: os.getenv("LEDGERLY_DB_URL", "sqlite:///data/ledgerly.db"))
    echo: bool = Field(default_factory=lambda: os.getenv("LEDGERLY_DB_ECHO", "false").lower() == "true")


class CompletionConfig(BaseModel):
    """External text-completion service (OpenRouter-compatible) configuration."""

    api_key: str = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    base_url: str = Field(default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"))
    default_model: str = Field(default_factory=lambda: os.getenv("OPENROUTER_DEFAULT_MODEL", "openai/gpt-4o-mini"))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("OPENROUTER_TIMEOUT", "30")))

    # Total number of attempts, including the first one
    max_retries: int = Field(default_factory=lambda: int(os.getenv("OPENROUTER_MAX_RETRIES", "3")))
    retry_backoff_seconds: float = 1.0

    temperature: float = 0.3
    app_name: str = "Ledgerly"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())

    def validate_settings(self) -> None:
        """Raise ValueError when the settings cannot produce a working client."""
        if not self.has_api_key:
            raise ValueError("OpenRouter API key is required. Set OPENROUTER_API_KEY.")

        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid base URL: {self.base_url}. Base URL must be an http(s) URL.")

        if self.timeout_seconds <= 0:
            raise ValueError(f"Invalid timeout: {self.timeout_seconds}. Timeout must be positive.")

        if self.max_retries < 0:
            raise ValueError(f"Invalid max_retries: {self.max_retries}. Must be a non-negative integer.")


class SuggestionConfig(BaseModel):
    """AI category suggestion pipeline configuration."""

    sync_mode: bool = Field(default_factory=lambda: _env_flag("AI_SUGGESTION_SYNC_MODE"))
    max_workers: int = Field(default_factory=lambda: int(os.getenv("AI_SUGGESTION_WORKERS", "4")))
    category_limit: int = 50

    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 30.0


class AppConfig(BaseModel):
    """Application configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    suggestions: SuggestionConfig = Field(default_factory=SuggestionConfig)

    data_dir: Path = Field(default_factory=lambda: Path(os.getenv("LEDGERLY_DATA_DIR", "data")))
    log_level: str = Field(default_factory=lambda: os.getenv("LEDGERLY_LOG_LEVEL", "INFO").upper())

    default_currency: str = "USD"

    def ensure_dirs(self) -> None:
        """Create necessary directories."""
        self.data_dir.mkdir(exist_ok=True)
