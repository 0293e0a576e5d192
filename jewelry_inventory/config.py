"""
Configuration settings for the jewelry inventory backend.

Uses Pydantic Settings to load environment variables for database connections,
pool sizing, timeouts and logging.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("jewelry_inventory", alias="DB_NAME")

    # Pool
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    db_pool_timeout_seconds: float = Field(10.0, alias="DB_POOL_TIMEOUT_SECONDS")

    # Deadlines; 0 disables
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")
    db_operation_timeout_seconds: float = Field(30.0, alias="DB_OPERATION_TIMEOUT_SECONDS")
    db_transaction_timeout_seconds: float = Field(30.0, alias="DB_TRANSACTION_TIMEOUT_SECONDS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    default_search_limit: int = Field(50, alias="DEFAULT_SEARCH_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


def as_deadline(seconds: Optional[float]) -> Optional[float]:
    """Translate a configured timeout into an asyncio delay (None when disabled)."""
    if seconds is None or seconds <= 0:
        return None
    return float(seconds)


__all__ = ["Settings", "get_settings", "as_deadline"]
