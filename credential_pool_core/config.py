"""
Centralized configuration management for the credential pool core.

This module provides a unified configuration system with support for:
- Environment variables
- Tunable retry and health policies
- Validation using Pydantic

Database connection settings live next to the engine in ``db/db_config.py``.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, Timeouts


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SecurityConfig(BaseModel):
    """Settings for at-rest secret encryption."""

    encryption_passphrase: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.API_ENCRYPTION_KEY.value),
        description="Passphrase the AES key is derived from",
        repr=False,
    )
    key_salt: str = Field(default="salt", description="Static salt for key derivation")

    def require_passphrase(self) -> str:
        """
        Return the configured passphrase.

        Raises:
            ConfigurationError: If no passphrase is configured
        """
        if not self.encryption_passphrase or not self.encryption_passphrase.strip():
            from .exceptions import ConfigurationError

            raise ConfigurationError(
                f"{EnvironmentVariable.API_ENCRYPTION_KEY.value} is not set; "
                "refusing to encrypt or decrypt credentials",
                setting=EnvironmentVariable.API_ENCRYPTION_KEY.value,
            )
        return self.encryption_passphrase


class UpstreamConfig(BaseModel):
    """Where the upstream API lives and how long calls to it may take."""

    base_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.UPSTREAM_BASE_URL.value,
            "https://generativelanguage.googleapis.com/v1beta",
        ),
        description="Base URL of the upstream API",
    )
    probe_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.UPSTREAM_PROBE_TIMEOUT.value, Timeouts.HEALTH_CHECK)
        ),
        gt=0,
        description="Timeout for health probe requests",
    )
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.UPSTREAM_REQUEST_TIMEOUT.value, Timeouts.UPSTREAM_REQUEST)
        ),
        gt=0,
        description="Timeout for upstream generation calls",
    )

    @field_validator("base_url")
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RetryConfig(BaseModel):
    """Retry behaviour of the resilient invoker."""

    max_attempts: int = Field(
        default=Limits.MAX_RETRY_ATTEMPTS, ge=1, description="Maximum attempts per invocation"
    )
    base_delay_seconds: float = Field(
        default=Timeouts.BACKOFF_BASE, ge=0, description="Base for exponential backoff (seconds)"
    )
    max_delay_seconds: float = Field(
        default=Timeouts.BACKOFF_MAX, ge=0, description="Maximum backoff time (seconds)"
    )


class HealthPolicyConfig(BaseModel):
    """Thresholds that decide whether a pool counts as healthy."""

    min_healthy_credentials: int = Field(default=1, ge=0)
    min_active_credentials: int = Field(default=2, ge=0)
    usage_warning_ratio: float = Field(
        default=0.9, gt=0, le=1, description="Usage share at which a key is near its limit"
    )
    high_error_rate: float = Field(default=0.5, ge=0, le=1)
    probe_workers: int = Field(
        default=Limits.MAX_PROBE_WORKERS, ge=1, description="Concurrent health probes"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    upstream: UpstreamConfig = Field(
        default_factory=UpstreamConfig, description="Upstream API configuration"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry configuration")
    health_policy: HealthPolicyConfig = Field(
        default_factory=HealthPolicyConfig, description="System health policy"
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
