"""
Configuration and settings for the murmur service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_prefix="MURMUR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api/v1")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)
    database_connect_timeout: int = Field(default=10)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Redis is only pinged by the health check
    redis_url: Optional[str] = Field(default=None)

    # Session tokens
    jwt_secret: str = Field(default="change-me")
    jwt_issuer: str = Field(default="murmur-api")
    jwt_expiry_minutes: int = Field(default=60)

    # Password hashing cost
    bcrypt_rounds: int = Field(default=12)

    # Message intake
    origin_retention_days: int = Field(default=30)
    enforce_message_limit: bool = Field(default=False)
    max_message_length: int = Field(default=2000)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
