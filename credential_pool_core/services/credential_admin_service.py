"""
Administrative operations around the credential pool.

These are the only code paths that add credentials, bring deactivated
credentials back, or re-encrypt stored secrets. The pool itself never calls
them; they are run by operators or scheduled maintenance jobs.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..constants import Limits, Timeouts
from ..db.db_base import utc_now
from ..exceptions import DecryptionFailedError, KeyNotFoundError, validation_failed
from ..repositories.credential_repository import CredentialRepository
from ..schemas.credential_schemas import (
    Credential,
    CredentialCreate,
    RecoveryResult,
    RecoveryStats,
)
from ..utils.encryption_utils import SecretCodec
from ..utils.logger import get_logger


class CredentialAdminService:
    """Adds, reactivates, recovers and re-encrypts credentials."""

    def __init__(self, repository: CredentialRepository, codec: SecretCodec):
        self.repository = repository
        self.codec = codec
        self.logger = get_logger()

    def add_credential(
        self,
        service_name: str,
        display_name: str,
        secret: str,
        usage_limit: int = Limits.DEFAULT_USAGE_LIMIT,
        expires_at: Optional[datetime] = None,
    ) -> Credential:
        """
        Validate, encrypt and store a new credential.

        Raises:
            ValidationError: If the secret does not look like a key for the service
        """
        if not self.codec.validate_format(secret):
            raise validation_failed("secret", secret, "does not match the expected key format")

        credential = self.repository.insert(
            CredentialCreate(
                service_name=service_name,
                display_name=display_name,
                encrypted_secret=self.codec.encrypt(secret),
                usage_limit=usage_limit,
                expires_at=expires_at,
            )
        )
        self.logger.info(
            "Credential added",
            extra={
                "credential_id": credential.id,
                "service_name": service_name,
                "display_name": display_name,
                "masked_secret": self.codec.mask(secret),
            },
        )
        return credential

    def reactivate(self, credential_id: str, reset_usage: bool = True) -> Credential:
        """
        Put a deactivated credential back into rotation.

        Raises:
            KeyNotFoundError: If the credential does not exist
        """
        fields = {"is_active": True}
        if reset_usage:
            fields["usage_count"] = 0
        if not self.repository.update_fields(credential_id, **fields):
            raise KeyNotFoundError(
                f"Cannot reactivate: credential '{credential_id}' does not exist",
                credential_id=credential_id,
            )

        self.logger.info(
            "Credential reactivated",
            extra={"credential_id": credential_id, "usage_reset": reset_usage},
        )
        return self.repository.get_by_id(credential_id)

    def recover_inactive(
        self,
        service_name: str,
        inactive_for: timedelta = timedelta(hours=Timeouts.RECOVERY_WINDOW_HOURS),
    ) -> RecoveryResult:
        """
        Reactivate credentials that have been inactive for longer than ``inactive_for``.

        Each recovered credential also gets its usage counter zeroed. Failures are
        collected per credential instead of aborting the run.
        """
        cutoff = utc_now() - inactive_for
        stale = self.repository.list_inactive_since(service_name, cutoff)

        recovered = 0
        errors = []
        for credential in stale:
            try:
                self.reactivate(credential.id, reset_usage=True)
                recovered += 1
            except Exception as e:
                self.logger.error(
                    "Failed to recover credential",
                    extra={"credential_id": credential.id, "error_type": type(e).__name__},
                )
                errors.append(f"{credential.display_name}: {e}")

        self.logger.info(
            "Inactive credential recovery finished",
            extra={
                "service_name": service_name,
                "recovered": recovered,
                "total_inactive": len(stale),
                "errors": len(errors),
            },
        )
        return RecoveryResult(
            success=not errors,
            recovered=recovered,
            total_inactive=len(stale),
            errors=errors,
        )

    def get_recovery_stats(
        self,
        service_name: str,
        inactive_for: timedelta = timedelta(hours=Timeouts.RECOVERY_WINDOW_HOURS),
    ) -> RecoveryStats:
        """Pool counts plus how many inactive credentials ``recover_inactive`` would pick up."""
        now = utc_now()
        cutoff = now - inactive_for
        credentials = self.repository.list_by_service(service_name)

        active = sum(1 for c in credentials if c.is_live(now))
        eligible = sum(1 for c in credentials if not c.is_active and c.updated_at < cutoff)
        return RecoveryStats(
            service_name=service_name,
            total_credentials=len(credentials),
            active_credentials=active,
            inactive_credentials=len(credentials) - active,
            eligible_for_recovery=eligible,
            last_updated=now,
        )

    def reencrypt(self, service_name: str, new_codec: SecretCodec) -> int:
        """
        Re-encrypt every secret of a service with ``new_codec``.

        Used for passphrase rotation and to upgrade values still in the legacy
        zero-IV format. Every secret is decrypted before anything is written and
        the rewrite is a single transaction. Returns the number of credentials
        rewritten.

        Raises:
            DecryptionFailedError: If a stored secret cannot be decrypted with the
                current codec; nothing is rewritten in that case
        """
        credentials = self.repository.list_by_service(service_name)
        ciphertexts = {}
        legacy = 0
        for credential in credentials:
            try:
                secret = self.codec.decrypt(credential.encrypted_secret)
            except DecryptionFailedError as e:
                e.add_context(credential_id=credential.id, service_name=service_name)
                self.logger.error(
                    "Re-encryption aborted; no credential was rewritten",
                    extra={"service_name": service_name, "credential_id": credential.id},
                )
                raise
            if self.codec.is_legacy_format(credential.encrypted_secret):
                legacy += 1
            ciphertexts[credential.id] = new_codec.encrypt(secret)

        rewritten = self.repository.replace_secrets(ciphertexts) if ciphertexts else 0

        self.logger.info(
            "Credentials re-encrypted",
            extra={"service_name": service_name, "rewritten": rewritten, "legacy_upgraded": legacy},
        )
        return rewritten
