"""Tests for centralized configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from credential_pool_core.config import (
    AppConfig,
    HealthPolicyConfig,
    LoggingConfig,
    RetryConfig,
    SecurityConfig,
    UpstreamConfig,
    get_config,
    reset_config,
    set_config,
)
from credential_pool_core.constants import LogLevel
from credential_pool_core.db import DatabaseConfig
from credential_pool_core.exceptions import ConfigurationError, ValidationError


class TestLoggingConfig:
    """Test LoggingConfig model."""

    def test_default_values(self):
        with patch.dict(os.environ, {}, clear=True):
            config = LoggingConfig()
        assert config.level == LogLevel.INFO.value

    def test_from_env(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "DEBUG"}):
            assert LoggingConfig().level == "DEBUG"

    def test_validate_log_level(self):
        assert LoggingConfig(level="warning").level == "WARNING"

        with pytest.raises(PydanticValidationError):
            LoggingConfig(level="LOUD")


class TestSecurityConfig:
    """Test SecurityConfig and its fail-closed passphrase."""

    def test_reads_passphrase_from_env(self):
        with patch.dict(os.environ, {"API_ENCRYPTION_KEY": "from-env"}):
            assert SecurityConfig().require_passphrase() == "from-env"

    def test_missing_passphrase_raises(self):
        with patch.dict(os.environ, {}, clear=True):
            config = SecurityConfig()

        assert config.encryption_passphrase is None
        with pytest.raises(ConfigurationError) as exc_info:
            config.require_passphrase()
        assert exc_info.value.context["setting"] == "API_ENCRYPTION_KEY"

    def test_passphrase_hidden_from_repr(self):
        assert "hunter2" not in repr(SecurityConfig(encryption_passphrase="hunter2"))


class TestUpstreamConfig:
    """Test UpstreamConfig model."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = UpstreamConfig()
        assert config.base_url == "https://generativelanguage.googleapis.com/v1beta"
        assert config.probe_timeout_seconds == 10
        assert config.request_timeout_seconds == 30

    def test_from_env(self):
        env = {
            "UPSTREAM_BASE_URL": "https://proxy.internal/v1/",
            "UPSTREAM_PROBE_TIMEOUT": "3",
        }
        with patch.dict(os.environ, env):
            config = UpstreamConfig()
        assert config.base_url == "https://proxy.internal/v1"
        assert config.probe_timeout_seconds == 3.0

    def test_timeouts_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            UpstreamConfig(probe_timeout_seconds=0)


class TestPolicies:
    """Test retry and health policy defaults."""

    def test_retry_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 5
        assert config.base_delay_seconds == 1.0
        assert config.max_delay_seconds == 30.0

    def test_health_policy_defaults(self):
        policy = HealthPolicyConfig()
        assert policy.min_healthy_credentials == 1
        assert policy.min_active_credentials == 2
        assert policy.usage_warning_ratio == 0.9

    def test_invalid_attempts(self):
        with pytest.raises(PydanticValidationError):
            RetryConfig(max_attempts=0)


class TestAppConfig:
    """Test the assembled configuration and its global accessors."""

    def test_sub_configs(self):
        config = AppConfig()
        assert isinstance(config.logging, LoggingConfig)
        assert isinstance(config.security, SecurityConfig)
        assert isinstance(config.upstream, UpstreamConfig)
        assert isinstance(config.retry, RetryConfig)
        assert isinstance(config.health_policy, HealthPolicyConfig)

    def test_global_accessors(self):
        reset_config()
        first = get_config()
        assert get_config() is first

        custom = AppConfig(retry=RetryConfig(max_attempts=2))
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom


class TestDatabaseConfig:
    """Test DatabaseConfig connection strings."""

    def test_sqlite(self):
        config = DatabaseConfig(db_type="sqlite", database="/tmp/pool.db")
        assert config.get_connection_string() == "sqlite:////tmp/pool.db"

    def test_postgres(self):
        config = DatabaseConfig(
            db_type="postgres", database="pool", host="db", username="app", password="secret"
        )
        assert config.get_connection_string() == "postgresql+psycopg://app:secret@db:5432/pool"

    def test_postgres_requires_credentials(self):
        config = DatabaseConfig(db_type="postgres", database="pool", host="db")
        with pytest.raises(ValidationError):
            config.get_connection_string()

    def test_unsupported_type(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(db_type="oracle", database="x").get_connection_string()

    def test_repr_masks_password(self):
        config = DatabaseConfig(
            db_type="postgres", database="pool", host="db", username="app", password="secret"
        )
        assert "secret" not in repr(config)

    def test_postgres_reports_missing_settings(self):
        with pytest.raises(ValidationError) as exc_info:
            DatabaseConfig(db_type="postgres", database="pool", host="db").get_connection_string()
        assert exc_info.value.context["missing"] == ["username", "password"]

    def test_from_env_database_url(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgres://app:pw@db.internal:6543/keys"}):
            config = DatabaseConfig.from_env()

        assert config.get_connection_string() == "postgresql+psycopg://app:pw@db.internal:6543/keys"
        assert config.db_type == "postgres"
        assert config.database == "keys"
        assert "pw" not in repr(config)

    def test_from_env_sqlite_url(self):
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite:////var/lib/pool.db"}):
            config = DatabaseConfig.from_env()

        assert config.is_sqlite is True
        assert config.get_connection_string() == "sqlite:////var/lib/pool.db"

    def test_from_env_db_variables(self):
        env = {"DB_HOST": "pg", "DB_NAME": "keys", "DB_USER": "svc", "DB_PASSWORD": "pw"}
        with patch.dict(os.environ, env, clear=True):
            config = DatabaseConfig.from_env()

        assert config.get_connection_string() == "postgresql+psycopg://svc:pw@pg:5432/keys"
        assert config.development_mode is False
