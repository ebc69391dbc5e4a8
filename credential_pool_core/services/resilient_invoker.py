"""
Resilient invoker: runs an upstream call with a pooled credential and
recovers from failures.

Authentication and quota failures retire the credential and retry at once
with another one. Transient failures (timeouts, connection errors, 5xx)
back off exponentially and retry with a freshly selected credential.
Anything else propagates unchanged. After the last attempt the caller gets
a ServiceUnavailableError that carries the final upstream error.
"""

import re
import time
from typing import Any, Callable, Optional, TypeVar

import requests

from ..config import RetryConfig, UpstreamConfig, get_config
from ..constants import ErrorCategory
from ..exceptions import (
    InvalidUpstreamResponseError,
    KeyNotFoundError,
    QuotaExceededError,
    ServiceUnavailableError,
    UpstreamCallError,
    UpstreamTimeoutError,
)
from ..utils.logger import get_logger
from ..utils.retry_utils import calculate_backoff_delay
from .credential_pool_service import CredentialPool

T = TypeVar("T")

ROTATE_CATEGORIES = (ErrorCategory.AUTHENTICATION, ErrorCategory.RATE_LIMIT)

_AUTH_PATTERN = re.compile(
    r"\b(401|403)\b|unauthori[sz]ed|invalid[ _-]?(api[ _-]?)?key|api key not valid"
    r"|permission[ _-]denied|forbidden",
    re.IGNORECASE,
)
_QUOTA_PATTERN = re.compile(
    r"\b(429|503)\b|quota|rate[ _-]?limit|resource[ _-]?exhausted|too many requests|overloaded",
    re.IGNORECASE,
)
_TRANSIENT_PATTERN = re.compile(
    r"\b(408|500|502|504)\b|time[d]?[ _-]?out|connection|network|econnreset|socket hang up"
    r"|temporarily unavailable",
    re.IGNORECASE,
)


def _classify_status(status_code: int) -> ErrorCategory:
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status_code in (429, 503):
        return ErrorCategory.RATE_LIMIT
    if status_code == 408 or 500 <= status_code < 600:
        return ErrorCategory.NETWORK
    return ErrorCategory.SYSTEM


def classify_error(error: BaseException) -> ErrorCategory:
    """
    Decide how the invoker reacts to an upstream failure.

    An explicit HTTP status wins; otherwise the exception type and message
    are inspected.

    Returns:
        AUTHENTICATION or RATE_LIMIT to rotate credentials, NETWORK to back
        off and retry, SYSTEM to give up immediately
    """
    if isinstance(error, (UpstreamTimeoutError, InvalidUpstreamResponseError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (requests.Timeout, requests.ConnectionError, TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK

    status = None
    if isinstance(error, UpstreamCallError):
        status = error.upstream_status
    elif isinstance(error, requests.HTTPError) and error.response is not None:
        status = error.response.status_code
    if status is not None:
        return _classify_status(status)

    message = str(error)
    if _AUTH_PATTERN.search(message):
        return ErrorCategory.AUTHENTICATION
    if _QUOTA_PATTERN.search(message):
        return ErrorCategory.RATE_LIMIT
    if _TRANSIENT_PATTERN.search(message):
        return ErrorCategory.NETWORK
    return ErrorCategory.SYSTEM


class ResilientInvoker:
    """Single entry point for upstream calls that need a pooled credential."""

    def __init__(
        self,
        pool: CredentialPool,
        retry_config: Optional[RetryConfig] = None,
        upstream_config: Optional[UpstreamConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        result_validator: Optional[Callable[[Any], bool]] = None,
    ):
        config = get_config()
        self.pool = pool
        self.retry_config = retry_config or config.retry
        self.upstream_config = upstream_config or config.upstream
        self.sleep = sleep
        self.result_validator = result_validator
        self.logger = get_logger()

    def invoke(
        self,
        service_name: str,
        request: Any,
        call: Callable[[str, Any, float], T],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run ``call(secret, request, timeout)`` with retries and credential rotation.

        Args:
            service_name: Pool to draw credentials from
            request: Opaque request handed to ``call``
            call: Upstream function; raises on failure
            timeout: Per-call timeout, defaults to the configured request timeout

        Returns:
            Whatever ``call`` returned on the successful attempt

        Raises:
            KeyNotFoundError / QuotaExceededError: The pool ran dry
            ServiceUnavailableError: Every attempt failed with a retryable error
            Exception: Non-retryable errors from ``call``, unchanged
        """
        timeout = timeout if timeout is not None else self.upstream_config.request_timeout_seconds
        max_attempts = self.retry_config.max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                credential = self.pool.select_one(service_name)
            except (KeyNotFoundError, QuotaExceededError) as e:
                if last_error is None:
                    raise
                # earlier attempts retired keys; keep the upstream failure that emptied the pool
                self.logger.error(
                    "Credential pool exhausted during retries",
                    extra={
                        "service_name": service_name,
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                    },
                )
                raise type(e)(
                    f"{e.message}; last upstream error: {last_error}",
                    cause=last_error if isinstance(last_error, Exception) else None,
                    service_name=service_name,
                    attempts=attempt - 1,
                ) from last_error

            try:
                result = call(credential.get_secret(), request, timeout)
                if self.result_validator is not None and not self.result_validator(result):
                    raise InvalidUpstreamResponseError(
                        "Upstream returned a partial or malformed result",
                        service_name=service_name,
                        credential_id=credential.id,
                    )
            except Exception as e:
                category = classify_error(e)
                log_extra = {
                    "service_name": service_name,
                    "credential_id": credential.id,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "category": category.value,
                    "error_type": type(e).__name__,
                }

                if category in ROTATE_CATEGORIES:
                    self.logger.warning("Credential rejected by upstream; rotating", extra=log_extra)
                    self.pool.deactivate(credential.id, reason=str(e))
                    last_error = e
                    continue

                if category == ErrorCategory.NETWORK:
                    last_error = e
                    if attempt < max_attempts:
                        delay = calculate_backoff_delay(
                            attempt,
                            base_delay=self.retry_config.base_delay_seconds,
                            max_delay=self.retry_config.max_delay_seconds,
                        )
                        self.logger.warning(
                            "Transient upstream failure; backing off",
                            extra={**log_extra, "delay_seconds": delay},
                        )
                        self.sleep(delay)
                    continue

                self.logger.error("Non-retryable upstream failure", extra=log_extra)
                raise

            self._record_success(credential.id, service_name, attempt)
            return result

        raise ServiceUnavailableError(
            f"Upstream call failed after {max_attempts} attempts: {last_error}",
            service_name=service_name,
            attempts=max_attempts,
            cause=last_error if isinstance(last_error, Exception) else None,
        ) from last_error

    def _record_success(self, credential_id: str, service_name: str, attempt: int) -> None:
        try:
            self.pool.record_usage(credential_id)
        except Exception as e:
            # the upstream call already succeeded; the result is still returned
            self.logger.error(
                "Failed to record credential usage",
                extra={
                    "service_name": service_name,
                    "credential_id": credential_id,
                    "error_type": type(e).__name__,
                },
            )
            return

        if attempt > 1:
            self.logger.info(
                "Upstream call succeeded after retry",
                extra={"service_name": service_name, "credential_id": credential_id, "attempt": attempt},
            )
