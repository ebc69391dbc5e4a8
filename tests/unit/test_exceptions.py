"""
Unit tests for the exception system.

Tests the base error behaviour, factory functions, correlation ids and the
credential pool error taxonomy.
"""

from unittest.mock import patch

import pytest

from credential_pool_core.exceptions import (
    BaseError,
    ConfigurationError,
    DatabaseError,
    DecryptionFailedError,
    ErrorCode,
    ExternalServiceError,
    KeyNotFoundError,
    QuotaExceededError,
    RepositoryError,
    ServiceUnavailableError,
    UpstreamCallError,
    UpstreamTimeoutError,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
    validation_failed,
)


class TestBaseError:
    """Test BaseError class."""

    def test_basic_error_creation(self):
        error = BaseError("Test error message")

        assert error.message == "Test error message"
        assert error.error_code == ErrorCode.INTERNAL_ERROR
        assert error.status_code == 500
        assert error.cause is None
        assert error.context["error_id"] == error.error_id

    def test_error_with_cause(self):
        original = ValueError("Original error")
        error = BaseError("Wrapped error", cause=original)

        assert error.cause is original
        assert error.context["cause"]["type"] == "ValueError"

    def test_to_dict(self):
        error = BaseError("Broken", error_code=ErrorCode.NOT_FOUND, status_code=404, item="x")

        result = error.to_dict()["error"]

        assert result["code"] == ErrorCode.NOT_FOUND.value
        assert result["message"] == "Broken"
        assert result["context"] == {"item": "x"}

    def test_to_dict_with_cause(self):
        error = BaseError("Wrapped", cause=RuntimeError("boom"))

        cause = error.to_dict(include_cause=True)["error"]["cause"]

        assert cause == {"type": "RuntimeError", "message": "boom"}

    def test_add_context(self):
        error = BaseError("x").add_context(credential_id="abc")
        assert error.context["credential_id"] == "abc"

    def test_logs_server_errors_as_error(self):
        with patch("credential_pool_core.utils.logger.ContextAwareLogger.error") as log_error:
            BaseError("server side")
        log_error.assert_called_once()

    def test_logs_client_errors_as_warning(self):
        with patch("credential_pool_core.utils.logger.ContextAwareLogger.warning") as log_warning:
            BaseError("client side", status_code=404)
        log_warning.assert_called_once()


class TestCorrelationId:
    """Test correlation id propagation."""

    def teardown_method(self):
        clear_correlation_id()

    def test_set_get_clear(self):
        set_correlation_id("corr-1")
        assert get_correlation_id() == "corr-1"
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_attached_to_errors(self):
        set_correlation_id("corr-2")
        error = BaseError("with correlation")

        assert error.context["correlation_id"] == "corr-2"
        assert error.to_dict()["error"]["correlation_id"] == "corr-2"


class TestFactories:
    """Test factory functions."""

    def test_validation_failed_does_not_record_value(self):
        error = validation_failed("secret", "AIza-super-secret", "bad format")

        assert error.status_code == 400
        assert error.context["value_type"] == "str"
        assert "AIza-super-secret" not in str(error.to_dict())


class TestCredentialPoolErrors:
    """Test the credential pool error taxonomy."""

    @pytest.mark.parametrize(
        "error_class,code,status",
        [
            (KeyNotFoundError, ErrorCode.NOT_FOUND, 404),
            (DecryptionFailedError, ErrorCode.DECRYPTION_FAILED, 500),
            (QuotaExceededError, ErrorCode.QUOTA_EXCEEDED, 429),
            (DatabaseError, ErrorCode.DATABASE_ERROR, 500),
            (ConfigurationError, ErrorCode.CONFIGURATION_ERROR, 500),
        ],
    )
    def test_codes(self, error_class, code, status):
        error = error_class()

        assert error.error_code == code
        assert error.status_code == status

    def test_database_error_is_repository_error(self):
        cause = RuntimeError("disk full")
        error = DatabaseError("write failed", cause=cause, operation="insert")

        assert isinstance(error, RepositoryError)
        assert error.cause is cause
        assert error.context["operation"] == "insert"

    def test_service_unavailable_carries_attempts(self):
        error = ServiceUnavailableError("gave up", service_name="gemini", attempts=5)

        assert isinstance(error, ExternalServiceError)
        assert error.status_code == 503
        assert error.attempts == 5
        assert error.context["attempts"] == 5
        assert error.context["service_name"] == "gemini"

    def test_upstream_call_error_status(self):
        error = UpstreamCallError("forbidden", upstream_status=403)

        assert error.upstream_status == 403
        assert error.context["upstream_status"] == 403

    def test_upstream_timeout(self):
        error = UpstreamTimeoutError()

        assert isinstance(error, UpstreamCallError)
        assert error.upstream_status is None
        assert error.error_code == ErrorCode.TIMEOUT_ERROR
