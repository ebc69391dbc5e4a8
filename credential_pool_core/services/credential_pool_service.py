"""
Credential pool: picks the least-used usable key for a service and keeps
usage accounting in the store.

Selection always re-reads the store. A credential is usable when it is
active, not expired and below its usage limit; among usable credentials the
one with the lowest usage wins, ties broken by age (oldest first).
"""

from typing import List, Optional, Tuple

from ..config import HealthPolicyConfig, get_config
from ..db.db_base import utc_now
from ..exceptions import (
    DecryptionFailedError,
    KeyNotFoundError,
    QuotaExceededError,
)
from ..repositories.credential_repository import CredentialRepository
from ..schemas.credential_schemas import Credential, DecryptedCredential, UsageSummary
from ..utils.encryption_utils import SecretCodec
from ..utils.logger import get_logger


class CredentialPool:
    """
    Selection, usage accounting and deactivation for pooled credentials.

    The pool never reactivates a credential; that is an administrative action
    (see ``CredentialAdminService``).
    """

    def __init__(
        self,
        repository: CredentialRepository,
        codec: SecretCodec,
        health_policy: Optional[HealthPolicyConfig] = None,
    ):
        self.repository = repository
        self.codec = codec
        self.health_policy = health_policy or get_config().health_policy
        self.logger = get_logger()

    def _candidates(self, service_name: str) -> List[Credential]:
        """
        Usable credentials of a service in selection order.

        Raises:
            KeyNotFoundError: If the service has no active, unexpired credential
            QuotaExceededError: If every such credential is at its usage limit
        """
        now = utc_now()
        active = [
            credential
            for credential in self.repository.list_by_service(service_name, active_only=True)
            if credential.is_live(now)
        ]
        if not active:
            raise KeyNotFoundError(
                f"No active credential available for service '{service_name}'",
                service_name=service_name,
            )

        candidates = [credential for credential in active if not credential.is_over_limit]
        if not candidates:
            raise QuotaExceededError(
                f"All {len(active)} active credentials for '{service_name}' reached their usage limit",
                service_name=service_name,
                active_credentials=len(active),
            )

        # least used first, oldest first on ties
        candidates.sort(key=lambda c: (c.usage_count, c.created_at, c.id))
        return candidates

    def _decrypt(self, credential: Credential) -> DecryptedCredential:
        secret = self.codec.decrypt(credential.encrypted_secret)
        return DecryptedCredential(**credential.model_dump(), secret=secret)

    def _decrypt_all(
        self, candidates: List[Credential], stop_at_first: bool
    ) -> Tuple[List[DecryptedCredential], List[DecryptionFailedError]]:
        decrypted: List[DecryptedCredential] = []
        failures: List[DecryptionFailedError] = []
        for credential in candidates:
            try:
                decrypted.append(self._decrypt(credential))
            except DecryptionFailedError as e:
                e.add_context(credential_id=credential.id, service_name=credential.service_name)
                failures.append(e)
                self.logger.warning(
                    "Skipping credential that cannot be decrypted",
                    extra={
                        "credential_id": credential.id,
                        "display_name": credential.display_name,
                        "service_name": credential.service_name,
                    },
                )
                continue
            if stop_at_first:
                break
        return decrypted, failures

    def select_one(self, service_name: str) -> DecryptedCredential:
        """
        Pick the least-used usable credential and decrypt it.

        A credential that fails to decrypt is skipped in favour of the next one;
        the call only fails when none of the candidates decrypt.

        Raises:
            KeyNotFoundError: No active credential for the service
            QuotaExceededError: All active credentials are at their limit
            DecryptionFailedError: No candidate could be decrypted
        """
        candidates = self._candidates(service_name)
        decrypted, failures = self._decrypt_all(candidates, stop_at_first=True)

        if not decrypted:
            last = failures[-1]
            raise DecryptionFailedError(
                f"None of {len(candidates)} credentials for '{service_name}' could be decrypted",
                cause=last,
                service_name=service_name,
                credential_id=candidates[-1].id,
            )

        selected = decrypted[0]
        self.logger.debug(
            "Credential selected",
            extra={
                "service_name": service_name,
                "credential_id": selected.id,
                "display_name": selected.display_name,
                "usage_count": selected.usage_count,
                "usage_limit": selected.usage_limit,
            },
        )
        return selected

    def select_all(self, service_name: str) -> List[DecryptedCredential]:
        """Every usable credential of a service, decrypted, in selection order."""
        candidates = self._candidates(service_name)
        decrypted, failures = self._decrypt_all(candidates, stop_at_first=False)
        if not decrypted:
            raise DecryptionFailedError(
                f"None of {len(candidates)} credentials for '{service_name}' could be decrypted",
                cause=failures[-1],
                service_name=service_name,
            )
        return decrypted

    def record_usage(self, credential_id: str) -> None:
        """
        Count one successful upstream call against a credential.

        Raises:
            KeyNotFoundError: If the credential does not exist
        """
        if not self.repository.increment_usage(credential_id):
            raise KeyNotFoundError(
                f"Cannot record usage: credential '{credential_id}' does not exist",
                credential_id=credential_id,
            )

    def deactivate(self, credential_id: str, reason: str) -> None:
        """
        Take a credential out of rotation. Deactivating twice is a no-op.

        Raises:
            KeyNotFoundError: If the credential does not exist
        """
        credential = self.repository.get_by_id(credential_id)
        if credential is None:
            raise KeyNotFoundError(
                f"Cannot deactivate: credential '{credential_id}' does not exist",
                credential_id=credential_id,
            )
        if not credential.is_active:
            self.logger.debug(
                "Credential already inactive", extra={"credential_id": credential_id, "reason": reason}
            )
            return

        self.repository.update_fields(credential_id, is_active=False)
        self.logger.warning(
            "Credential deactivated",
            extra={
                "credential_id": credential_id,
                "display_name": credential.display_name,
                "service_name": credential.service_name,
                "reason": reason,
            },
        )

    def reset_usage(self, service_name: str) -> int:
        """Daily reset of usage counters; returns the number of credentials reset."""
        count = self.repository.reset_usage(service_name)
        self.logger.info(
            "Usage counters reset", extra={"service_name": service_name, "credentials_reset": count}
        )
        return count

    def get_usage(self, credential_id: str) -> UsageSummary:
        """
        Usage of one credential relative to its limit.

        Raises:
            KeyNotFoundError: If the credential does not exist
        """
        credential = self.repository.get_by_id(credential_id)
        if credential is None:
            raise KeyNotFoundError(
                f"Credential '{credential_id}' does not exist", credential_id=credential_id
            )

        ratio = credential.usage_count / credential.usage_limit if credential.usage_limit else 1.0
        return UsageSummary(
            credential_id=credential.id,
            display_name=credential.display_name,
            usage_count=credential.usage_count,
            usage_limit=credential.usage_limit,
            usage_percentage=round(ratio * 100, 2),
            is_near_limit=ratio >= self.health_policy.usage_warning_ratio,
        )
