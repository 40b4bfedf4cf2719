"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./event_receiver.db",
        description="Async SQLAlchemy connection URL",
    )
    database_pool_size: Optional[int] = Field(default=None, description="Connection pool size")
    database_max_overflow: Optional[int] = Field(
        default=None, description="Max database connection overflow"
    )
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")
    store_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Upper bound for a single account store call"
    )

    # Application Configuration
    app_name: str = Field(default="event-receiver", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Worker Configuration
    worker_concurrency: int = Field(default=1, description="Concurrent consumer tasks")
    idle_poll_interval_seconds: float = Field(
        default=10.0, description="Sleep between peeks when the queue is empty"
    )
    error_backoff_seconds: float = Field(
        default=5.0, description="Pause after an unexpected error in the consume loop"
    )
    processing_policy: Literal["no_retry", "retry", "rollback", "abandon"] = Field(
        default="rollback", description="Failure handling policy for the message processor"
    )

    # Queue Configuration
    max_delivery_count: int = Field(
        default=3, description="Abandons tolerated before the queue dead-letters a message"
    )

    # Monitoring
    metrics_port: Optional[int] = Field(
        default=None, description="Expose Prometheus metrics on this port when set"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("worker_concurrency")
    @classmethod
    def validate_worker_concurrency(cls, v: int) -> int:
        """At least one consumer must run."""
        if v < 1:
            raise ValueError("worker_concurrency must be at least 1")
        return v

    @property
    def is_sqlite(self) -> bool:
        """SQLite URLs don't accept pool sizing arguments."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
