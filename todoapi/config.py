"""
Configuration and settings for the todo service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Accepted only for the in-memory engine.
DEFAULT_JWT_SECRET = "change-me-in-production-please-32-bytes"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Storage engine: memory | sqlite | postgresql | mongodb
    db_type: str = Field(default="memory")

    # Relational backends
    database_url: Optional[str] = Field(default=None)
    sqlite_path: str = Field(default="todo_app.sqlite3")
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="todo_app")
    db_user: str = Field(default="postgres")
    db_password: str = Field(default="password")

    # Document backend
    mongodb_uri: str = Field(default="mongodb://localhost:27017")
    mongodb_db: str = Field(default="todo_app")

    # Bearer tokens
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_in: int = Field(default=24 * 3600)

    # Credential hashing cost factor
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
