"""
Consolidated exception system with error codes, context, and correlation support.

This module provides the exception hierarchy for the credential pool, with
automatic logging and correlation ID tracking. Domain errors (missing keys,
decryption failures, exhausted quotas, upstream outages, store failures)
are defined at the bottom of the module.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"
    DECRYPTION_FAILED = "1005"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    EXPIRED = "3004"
    LIMIT_EXCEEDED = "3005"

    # Business logic errors (4xxx)
    QUOTA_EXCEEDED = "4002"
    PERMISSION_DENIED = "4003"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"
    SERVICE_UNAVAILABLE = "5005"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP-style status code
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Imported lazily: the logger module reads configuration at call time
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(f"Error {self.error_code.value}: {self.message}", extra=log_data)
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include cause information (useful for debugging)
            include_traceback: Include full traceback (only in debug mode)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
            if include_traceback:
                result["error"]["cause"]["traceback"] = self.context["cause"]["traceback"]

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add additional context to the error (fluent interface)."""
        self.context.update(kwargs)
        return self


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """External service integration errors."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        status_code: int = 502,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, status_code, cause, **context)


class ConfigurationError(BaseError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.CONFIGURATION_ERROR, status_code=500, **kwargs
        )


# Factory functions for common error patterns
def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """
    Factory for validation errors.

    Args:
        field: Field that failed validation
        value: The invalid value (only its type is recorded)
        reason: Why validation failed
        cause: Original exception if any

    Returns:
        Configured ValidationError instance
    """
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.VALIDATION_FAILED,
        cause=cause,
        value_type=type(value).__name__,
        reason=reason,
    )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")


# ==================== CREDENTIAL POOL EXCEPTIONS ====================


class KeyNotFoundError(BaseError):
    """Raised when no active credential exists for a service, or an id is unknown."""

    def __init__(self, message: str = "No active credential available", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class DecryptionFailedError(BaseError):
    """Raised when a stored secret cannot be decrypted (malformed data or wrong key)."""

    def __init__(self, message: str = "Failed to decrypt credential", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.DECRYPTION_FAILED, status_code=500, **kwargs
        )


class QuotaExceededError(BaseError):
    """Raised when every active credential of a service has reached its usage limit."""

    def __init__(self, message: str = "All credentials have reached their usage limit", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.QUOTA_EXCEEDED, status_code=429, **kwargs
        )


class DatabaseError(RepositoryError):
    """Raised when the credential store cannot be read or written."""

    def __init__(self, message: str = "Credential store operation failed", **kwargs):
        super().__init__(message, ErrorCode.DATABASE_ERROR, 500, **kwargs)


class ServiceUnavailableError(ExternalServiceError):
    """Raised when the upstream stays unavailable after every allowed attempt."""

    def __init__(
        self,
        message: str = "Upstream service unavailable",
        service_name: str = "upstream",
        attempts: int = 0,
        **kwargs,
    ):
        self.attempts = attempts
        super().__init__(
            message,
            service_name,
            error_code=ErrorCode.SERVICE_UNAVAILABLE,
            status_code=503,
            attempts=attempts,
            **kwargs,
        )


class UpstreamCallError(ExternalServiceError):
    """
    Raised by upstream callables when a request fails.

    ``upstream_status`` carries the HTTP status returned by the upstream, if any,
    and drives retry classification.
    """

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        service_name: str = "upstream",
        **kwargs,
    ):
        self.upstream_status = upstream_status
        super().__init__(message, service_name, upstream_status=upstream_status, **kwargs)


class UpstreamTimeoutError(UpstreamCallError):
    """Raised when an upstream call exceeds its timeout."""

    def __init__(self, message: str = "Upstream request timed out", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.TIMEOUT_ERROR)
        super().__init__(message, upstream_status=None, **kwargs)


class InvalidUpstreamResponseError(UpstreamCallError):
    """Raised when an upstream result is rejected as partial or malformed."""
