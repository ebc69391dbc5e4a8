"""
Health probe for pooled credentials.

A probe never changes a credential. Local checks (inactive, expired, over the
usage limit) short-circuit before any network call; otherwise the key is
tried against the upstream's model-listing endpoint.
"""

import threading
from typing import Optional

import requests

from ..config import UpstreamConfig, get_config
from ..constants import HealthReason
from ..db.db_base import utc_now
from ..exceptions import DecryptionFailedError
from ..repositories.credential_repository import CredentialRepository
from ..schemas.credential_schemas import Credential, HealthRecord
from ..utils.encryption_utils import SecretCodec
from ..utils.logger import get_logger


def reason_for_status(status_code: int) -> Optional[HealthReason]:
    """Map an upstream HTTP status to an unhealthy reason; None means healthy."""
    if status_code == 200:
        return None
    if status_code in (401, 403):
        return HealthReason.UNAUTHORIZED
    if status_code == 429:
        return HealthReason.RATE_LIMITED
    if 500 <= status_code < 600:
        return HealthReason.UPSTREAM_ERROR
    return HealthReason.UNEXPECTED_STATUS


class HealthProbe:
    """
    Checks whether individual credentials are usable right now.

    Probes may run on several threads at once. Without an injected
    ``http_session`` each thread gets its own ``requests.Session``; an injected
    session is shared by all threads and must be safe to use concurrently.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        codec: SecretCodec,
        upstream_config: Optional[UpstreamConfig] = None,
        http_session: Optional[requests.Session] = None,
    ):
        self.repository = repository
        self.codec = codec
        self.upstream_config = upstream_config or get_config().upstream
        self.http_session = http_session
        self._local = threading.local()
        self.logger = get_logger()

    def check(self, credential_id: str) -> HealthRecord:
        """Load a credential and probe it; an unknown id yields an unhealthy record."""
        credential = self.repository.get_by_id(credential_id)
        if credential is None:
            return HealthRecord(
                credential_id=credential_id,
                display_name="unknown",
                is_active=False,
                is_healthy=False,
                error_count=1,
                last_error=HealthReason.NOT_FOUND.value,
            )
        return self.probe(credential)

    def probe(self, credential: Credential) -> HealthRecord:
        """
        Evaluate one credential.

        Order: inactive/expired, usage limit, decryption, then the upstream call.

        Args:
            credential: Record to evaluate

        Returns:
            HealthRecord with ``last_error`` set to the reason when unhealthy
        """
        now = utc_now()
        if not credential.is_active:
            reason: Optional[HealthReason] = HealthReason.INACTIVE
        elif credential.is_expired(now):
            reason = HealthReason.EXPIRED
        elif credential.is_over_limit:
            reason = HealthReason.LIMIT_EXCEEDED
        else:
            reason = self._probe_upstream(credential)

        record = HealthRecord(
            credential_id=credential.id,
            display_name=credential.display_name,
            is_active=credential.is_active,
            is_healthy=reason is None,
            checked_at=now,
            error_count=0 if reason is None else 1,
            last_error=reason.value if reason else None,
        )

        self.logger.debug(
            "Credential probed",
            extra={
                "credential_id": credential.id,
                "display_name": credential.display_name,
                "is_healthy": record.is_healthy,
                "reason": record.last_error,
            },
        )
        return record

    def _session(self):
        if self.http_session is not None:
            return self.http_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _probe_upstream(self, credential: Credential) -> Optional[HealthReason]:
        try:
            secret = self.codec.decrypt(credential.encrypted_secret)
        except DecryptionFailedError:
            return HealthReason.DECRYPTION_FAILED

        url = f"{self.upstream_config.base_url}/models"
        try:
            response = self._session().get(
                url,
                params={"key": secret},
                timeout=self.upstream_config.probe_timeout_seconds,
            )
        except requests.Timeout:
            return HealthReason.TIMEOUT
        except requests.RequestException as e:
            # the exception text may contain the request URL, and with it the key
            self.logger.warning(
                "Health probe transport failure",
                extra={"credential_id": credential.id, "error_type": type(e).__name__},
            )
            return HealthReason.UPSTREAM_ERROR

        return reason_for_status(response.status_code)
