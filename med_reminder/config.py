"""
Configuration and settings for the medication reminder backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Document store (MongoDB expected)
    mongo_url: str = Field(default="mongodb://127.0.0.1:27017/med_reminder_db")
    mongo_collection: str = Field(default="medications")
    mongo_timeout_ms: int = Field(default=5000)

    # Relational alternative; takes precedence over Mongo when set
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias="MED_REMINDER_USE_IN_MEMORY_BACKENDS",
    )

    # HTTP listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
