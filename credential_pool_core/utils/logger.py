"""
Logging helpers for the credential pool.

Console logs go through ContextAwareLogger, which renders the ``extra`` dict as
pipe-delimited ``key=value`` pairs so context survives any formatter.
Secrets must never be passed in ``extra``; use ids or masked values.
"""

import logging
import sys
from typing import Optional, Union

from ..config import get_config

_component_logger = None


class ContextAwareLogger:
    """
    Logger wrapper that formats extra attributes in message while preserving them.

    This keeps extras visible in console output even when a host process
    replaces the handlers' formatters.
    """

    def __init__(self, logger):
        """Initialize with an existing logger."""
        self.logger = logger

    def _log_with_formatted_extra(self, level, msg, **kwargs):
        """
        Log with extra data formatted into the message.

        Args:
            level: Logging level method to use
            msg: Log message
            **kwargs: Additional arguments including 'extra' and 'exc_info'
        """
        extra = kwargs.pop("extra", {})

        if extra:
            extra_str = " | ".join([f"{k}={v}" for k, v in extra.items()])
            full_msg = f"{msg} | {extra_str}"
        else:
            full_msg = msg

        log_method = getattr(self.logger, level)
        log_method(full_msg, extra=extra, **kwargs)

    def set_level(self, level):
        """Set the logging level of the underlying logger."""
        self.logger.setLevel(level)

    def info(self, msg, **kwargs):
        self._log_with_formatted_extra("info", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._log_with_formatted_extra("error", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._log_with_formatted_extra("warning", msg, **kwargs)

    def debug(self, msg, **kwargs):
        self._log_with_formatted_extra("debug", msg, **kwargs)

    def exception(self, msg, **kwargs):
        """Log exception with formatted extra."""
        self._log_with_formatted_extra("exception", msg, **kwargs)


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds the current correlation id to log records.
    """

    def filter(self, record):
        # Lazy import: exceptions imports this module when errors log themselves
        from ..exceptions import get_correlation_id

        correlation_id = get_correlation_id()
        if correlation_id:
            record.correlation_id = correlation_id

        return True


def _resolve_level(log_level: Union[int, str]) -> int:
    if isinstance(log_level, str):
        return getattr(logging, log_level.upper(), logging.INFO)
    return log_level


def configure_logging(
    component_name: str,
    log_level: Optional[Union[int, str]] = None,
) -> "ContextAwareLogger":
    """
    Configure console logging for a component (worker, scheduled job, CLI).

    Args:
        component_name: Name of the component owning the logger
        log_level: Logging level (default: from config)

    Returns:
        The configured logger wrapped with ContextAwareLogger
    """
    global _component_logger

    if log_level is None:
        log_level = get_config().logging.level
    log_level = _resolve_level(log_level)

    logger = logging.getLogger(f"credential_pool.{component_name}")
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(get_config().logging.format))
    console_handler.addFilter(CorrelationIdFilter())
    logger.addHandler(console_handler)

    wrapped_logger = ContextAwareLogger(logger)
    wrapped_logger.info("Component logger configured", extra={"component": component_name})

    _component_logger = wrapped_logger
    return wrapped_logger


def get_logger(
    log_level: Optional[Union[int, str]] = None,
) -> "ContextAwareLogger":
    """
    Get the component logger, or a wrapped root logger if none is configured.

    Args:
        log_level: Optional log level to set on the root logger

    Returns:
        ContextAwareLogger instance
    """
    if _component_logger is not None:
        return _component_logger

    logger = logging.getLogger()

    if log_level is None:
        log_level = get_config().logging.level
    logger.setLevel(_resolve_level(log_level))

    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the configured component logger."""
    global _component_logger
    _component_logger = None
