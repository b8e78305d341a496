"""Itemize sync configuration settings using pydantic-settings."""

from functools import cached_property
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the itemize sync agent.

    Settings are loaded from environment variables with the ITEMIZE_ prefix.
    For example, ITEMIZE_API_URL=https://staging.recevity.com sets api_url.
    """

    model_config = SettingsConfigDict(
        env_prefix="ITEMIZE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Extraction service
    api_url: str = "https://recevity.com"
    request_timeout: float = 30.0  # seconds, applies to every HTTP call

    # Connectivity probing
    probe_url: str | None = None  # defaults to api_url
    probe_interval: float = 10.0  # seconds between reachability checks

    # Session credentials used by the CLI session provider
    access_token: str | None = None
    refresh_token: str | None = None

    # Storage
    data_dir: Path = Path("~/.local/share/itemize")
    chunk_size: int = 2000  # characters per secure store item
    encryption_key: str | None = None  # urlsafe base64, 32 bytes

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Ensure chunk size is positive."""
        if v < 1:
            raise ValueError("chunk_size must be at least 1")
        return v

    @field_validator("request_timeout", "probe_interval")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Ensure timing values are positive."""
        if v <= 0:
            raise ValueError("timing values must be greater than 0 seconds")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def receipts_path(self) -> Path:
        """Directory holding captured files waiting for upload."""
        return self.data_path / "ii-offline-receipts"

    @cached_property
    def secure_db_path(self) -> Path:
        """SQLite file backing the encrypted key-value store."""
        return self.data_path / "secure_store.db"

    @cached_property
    def key_path(self) -> Path:
        """Location of the generated encryption key."""
        return self.data_path / "vault.key"

    @property
    def effective_probe_url(self) -> str:
        """URL used for reachability checks."""
        return self.probe_url or self.api_url
