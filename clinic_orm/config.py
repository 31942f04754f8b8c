"""
Configuration settings for clinic-orm.

Uses Pydantic Settings to load environment variables for the database
connection pool, transaction retry policy, and logging.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("dental_clinic_mis", alias="DB_NAME")

    # Pool
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    # 0 means an unbounded wait queue
    db_pool_max_waiting: int = Field(0, alias="DB_POOL_MAX_WAITING")
    db_pool_timeout: float = Field(30.0, alias="DB_POOL_TIMEOUT")
    db_keepalive: bool = Field(True, alias="DB_KEEPALIVE")

    # Transactions
    tx_retries: int = Field(3, alias="TX_RETRIES")
    tx_backoff_ms: int = Field(50, alias="TX_BACKOFF_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

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


__all__ = ["Settings", "get_settings"]
