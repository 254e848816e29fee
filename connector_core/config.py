"""
Centralized configuration management for the connector core.

This module provides a unified configuration system with support for:
- Environment variables
- Feature flags
- Validation using Pydantic
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, LogLevel


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./connector_core.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")


class QueueConfig(BaseModel):
    """Azure Storage Queue configuration used for log shipping."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default="logs-queue", description="Logs queue name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class FeatureFlags(BaseModel):
    """Feature flags for controlling runtime behavior."""

    enable_logs_queue: bool = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.ENABLE_LOGS_QUEUE.value, "false"
        ).lower()
        == "true",
        description="Ship structured logs to Azure Storage Queue",
    )


class SecurityConfig(BaseModel):
    """Secrets held by the server."""

    master_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.CREDENTIAL_MASTER_KEY.value),
        description="Fernet master key(s) for credential encryption, comma separated for rotation",
    )
    cron_secret: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.CRON_SECRET.value),
        description="Bearer secret required by the scheduled batch endpoint",
    )
    oauth_state_ttl_seconds: int = Field(
        default=900, description="Lifetime of an OAuth state token"
    )


class InvocationConfig(BaseModel):
    """Outbound action call behavior."""

    timeout_seconds: float = Field(default=30.0, description="Upstream HTTP timeout")
    user_agent: str = Field(default="connector-core/1.0", description="User-Agent for actions")
    refresh_buffer_seconds: int = Field(
        default=300, description="Refresh access tokens expiring within this window"
    )


class PollingConfig(BaseModel):
    """Trigger poller behavior."""

    max_workers: int = Field(default=10, description="Concurrent triggers per run")
    error_threshold: int = Field(
        default=5, description="Consecutive failures before a trigger moves to ERROR"
    )
    min_interval_seconds: int = Field(
        default=60, description="Minimum seconds between two polls of one trigger"
    )

    @field_validator("max_workers", "error_threshold")
    def validate_positive(cls, v: int) -> int:
        """Worker count and threshold must be positive."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class DeliveryConfig(BaseModel):
    """Webhook dispatcher behavior."""

    max_attempts: int = Field(default=5, description="Delivery attempts before an event fails")
    backoff_base_seconds: int = Field(default=60, description="Delay after the first failure")
    backoff_max_seconds: int = Field(default=900, description="Upper bound on retry delay")
    timeout_seconds: float = Field(default=30.0, description="Webhook HTTP timeout")
    retry_batch_size: int = Field(default=50, description="Events per retry sweep")
    stale_pending_seconds: int = Field(
        default=600, description="Pending events older than this are swept for delivery"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true",
        description="Debug mode",
    )
    catalog_path: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.INTEGRATION_CATALOG_PATH.value),
        description="JSON file holding integration and action definitions",
    )

    # Sub-configurations
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    features: FeatureFlags = Field(default_factory=FeatureFlags, description="Feature flags")
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    invocation: InvocationConfig = Field(
        default_factory=InvocationConfig, description="Action invocation configuration"
    )
    polling: PollingConfig = Field(
        default_factory=PollingConfig, description="Trigger polling configuration"
    )
    delivery: DeliveryConfig = Field(
        default_factory=DeliveryConfig, description="Webhook delivery configuration"
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
