"""
Configuration and settings for the backend.
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

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible storage for chat backups
    s3_endpoint: Optional[str] = Field(default=None, env="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, env="S3_REGION")
    backup_bucket: Optional[str] = Field(default=None, env="BACKUP_BUCKET")
    backup_prefix: str = Field(default="chat-backups", env="BACKUP_PREFIX")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Daily backup schedule ("HH:MM", local time)
    backup_enabled: bool = Field(default=True, env="BACKUP_ENABLED")
    backup_time: str = Field(default="02:00", env="BACKUP_TIME")
    backup_upload_timeout_seconds: float = Field(
        default=30.0, env="BACKUP_UPLOAD_TIMEOUT_SECONDS"
    )

    # LLM / Gemini
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", env="GEMINI_MODEL")

    # Identity tokens. When unset, the chat handshake trusts user_id alone.
    session_secret: Optional[str] = Field(default=None, env="SESSION_SECRET")
    session_token_ttl_seconds: int = Field(
        default=7 * 24 * 3600, env="SESSION_TOKEN_TTL_SECONDS"
    )

    # Cache (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    history_cache_ttl_seconds: int = Field(
        default=300, env="HISTORY_CACHE_TTL_SECONDS"
    )

    # Realtime
    session_outbox_size: int = Field(default=256, env="SESSION_OUTBOX_SIZE")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )
    seed_default_roster: bool = Field(default=True, env="SEED_DEFAULT_ROSTER")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
