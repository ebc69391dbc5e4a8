"""
Constants and enums for the credential pool core.

This module centralizes the magic strings and limits used by the pool,
the health probe and the resilient invoker.
"""

from enum import Enum


class LogLevel(str, Enum):
    """Standard logging levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    DATABASE_URL = "DATABASE_URL"
    LOG_LEVEL = "LOG_LEVEL"
    API_ENCRYPTION_KEY = "API_ENCRYPTION_KEY"
    UPSTREAM_BASE_URL = "UPSTREAM_BASE_URL"
    UPSTREAM_PROBE_TIMEOUT = "UPSTREAM_PROBE_TIMEOUT"
    UPSTREAM_REQUEST_TIMEOUT = "UPSTREAM_REQUEST_TIMEOUT"


class ErrorCategory(str, Enum):
    """Categories of upstream errors for retry classification."""

    VALIDATION = "validation"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SYSTEM = "system"


class HealthReason(str, Enum):
    """Reasons recorded on an unhealthy probe result."""

    INACTIVE = "inactive"
    EXPIRED = "expired"
    LIMIT_EXCEEDED = "limit exceeded"
    DECRYPTION_FAILED = "decryption failed"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate limited"
    UPSTREAM_ERROR = "upstream error"
    TIMEOUT = "timeout"
    UNEXPECTED_STATUS = "unexpected status"
    NOT_FOUND = "not found"


# Gemini API keys: "AIza" followed by 35 url-safe characters
GEMINI_KEY_PATTERN = r"^AIza[0-9A-Za-z_-]{35}$"


class Limits:
    """System limits and constraints."""

    MAX_DISPLAY_NAME_LENGTH = 100
    MAX_SERVICE_NAME_LENGTH = 50
    DEFAULT_USAGE_LIMIT = 1000
    MAX_RETRY_ATTEMPTS = 5
    MAX_PROBE_WORKERS = 8
    MASK_PREFIX_LENGTH = 10
    MASK_SUFFIX_LENGTH = 3
    MASK_RUN_LENGTH = 8


class Timeouts:
    """Timeout values in seconds."""

    HEALTH_CHECK = 10
    UPSTREAM_REQUEST = 30
    BACKOFF_BASE = 1.0
    BACKOFF_MAX = 30.0
    RECOVERY_WINDOW_HOURS = 24


class Encryption:
    """Parameters of the at-rest secret encryption."""

    KDF_SALT = "salt"
    KDF_N = 2**14
    KDF_R = 8
    KDF_P = 1
    KEY_LENGTH = 24  # AES-192
    IV_LENGTH = 16
    BLOCK_SIZE_BITS = 128
    SEPARATOR = ":"
