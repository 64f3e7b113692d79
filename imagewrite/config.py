"""Configuration settings for imagewrite.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import hashlib
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 65536 * 16
DEFAULT_CHUNK_SIZE = 1024 * 1024


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMAGEWRITE_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGEWRITE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Transfer
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        ge=512,
        description="Bytes written to the device per chunk",
    )

    # Verification
    verify: bool = Field(
        default=True,
        description="Verify the device against the image after writing",
    )
    digest_algorithm: str = Field(
        default="sha256",
        description="hashlib algorithm used for verification",
    )
    digest_chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        ge=512,
        description="Bytes read per chunk while computing digests",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("digest_algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        if value not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported digest algorithm: {value}")
        return value


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_CHUNK_SIZE", "Settings", "get_settings", "print_settings_json"]
