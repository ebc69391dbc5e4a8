"""Utility modules for the credential pool core."""

# Encryption utilities
from .encryption_utils import SecretCodec, derive_key

# Logging utilities
from .logger import (
    ContextAwareLogger,
    CorrelationIdFilter,
    configure_logging,
    get_logger,
)

# Retry utilities
from .retry_utils import calculate_backoff_delay

__all__ = [
    # Encryption utilities
    "SecretCodec",
    "derive_key",
    # Logging utilities
    "ContextAwareLogger",
    "CorrelationIdFilter",
    "configure_logging",
    "get_logger",
    # Retry utilities
    "calculate_backoff_delay",
]
