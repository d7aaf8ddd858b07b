"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: PostgresDsn = Field(
        default=...,
        description="PostgreSQL connection URL with asyncpg driver",
    )

    # Redis
    redis_url: RedisDsn = Field(
        default=...,
        description="Redis connection URL (per-minute usage counters)",
    )

    # Administrative surface
    admin_api_token: SecretStr = Field(
        default=...,
        description="Bearer token required on administrative endpoints",
    )

    # Application
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment",
    )
    app_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # Integration authentication
    api_key_header: str = Field(
        default="X-API-Key",
        description="Header carrying the integration API key",
    )
    trust_forwarded_headers: bool = Field(
        default=False,
        description="Honour X-Forwarded-For / X-Real-IP; enable only behind a trusted proxy",
    )
    expose_validation_errors: bool = Field(
        default=False,
        description="Return specific validation error codes to integration callers",
    )

    # Rate limits (advisory, stored on the key)
    default_rate_limit_per_minute: int = Field(
        default=500,
        ge=1,
        description="Rate limit assigned to keys created without one",
    )
    max_rate_limit_per_minute: int = Field(
        default=100000,
        ge=1,
        description="Upper bound accepted for a key's rate limit",
    )

    # Lifecycle
    lifecycle_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Deadline for a single lifecycle operation",
    )

    # Usage accounting
    usage_queue_max_size: int = Field(
        default=10000,
        ge=1,
        description="Maximum number of pending usage events",
    )
    usage_batch_size: int = Field(
        default=200,
        ge=1,
        description="Maximum events persisted per usage flush",
    )
    usage_flush_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Maximum time an event waits before being flushed",
    )
    usage_shutdown_timeout_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Time allowed to drain the usage queue on shutdown",
    )
    usage_retention_days: int = Field(
        default=90,
        ge=1,
        description="Usage log rows older than this are pruned",
    )
    usage_counter_ttl_seconds: int = Field(
        default=120,
        ge=60,
        description="Expiry for per-minute request counters in Redis",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    return Settings()
