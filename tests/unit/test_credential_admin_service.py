"""
Unit tests for CredentialAdminService.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from credential_pool_core.exceptions import (
    DecryptionFailedError,
    KeyNotFoundError,
    ValidationError,
)
from credential_pool_core.services.credential_admin_service import CredentialAdminService
from credential_pool_core.utils.encryption_utils import derive_key
from tests.conftest import TEST_PASSPHRASE
from tests.fixtures.factories import encrypt_legacy, make_secret


@pytest.fixture
def admin(repository, codec):
    return CredentialAdminService(repository, codec)


class TestAddCredential:
    """Test adding credentials."""

    def test_stores_encrypted_secret(self, admin, codec, repository):
        secret = make_secret(500)

        credential = admin.add_credential("gemini", "primary", secret, usage_limit=200)

        stored = repository.get_by_id(credential.id)
        assert stored.encrypted_secret != secret
        assert ":" in stored.encrypted_secret
        assert codec.decrypt(stored.encrypted_secret) == secret
        assert stored.usage_limit == 200
        assert stored.is_active is True

    def test_rejects_malformed_secret(self, admin, repository):
        with pytest.raises(ValidationError) as exc_info:
            admin.add_credential("gemini", "broken", "not-a-key")

        assert exc_info.value.context["field"] == "secret"
        assert "not-a-key" not in str(exc_info.value.to_dict())
        assert repository.list_by_service("gemini") == []

    def test_secret_is_never_logged(self, admin):
        secret = make_secret(501)

        with patch("credential_pool_core.utils.logger.ContextAwareLogger._log_with_formatted_extra") as log:
            admin.add_credential("gemini", "quiet", secret)

        logged = " ".join(str(c) for c in log.call_args_list)
        assert secret not in logged
        assert secret[:10] in logged


class TestReactivate:
    """Test the administrative reactivation path."""

    def test_reactivates_and_resets_usage(self, admin, make_credential):
        credential = make_credential(is_active=False, current_usage=80)

        reactivated = admin.reactivate(credential.id)

        assert reactivated.is_active is True
        assert reactivated.usage_count == 0

    def test_can_keep_usage(self, admin, make_credential):
        credential = make_credential(is_active=False, current_usage=80)

        assert admin.reactivate(credential.id, reset_usage=False).usage_count == 80

    def test_unknown_id(self, admin):
        with pytest.raises(KeyNotFoundError):
            admin.reactivate("does-not-exist")


class TestRecoverInactive:
    """Test recovery of long-inactive credentials."""

    def test_recovers_only_stale_inactive(self, admin, repository, make_credential):
        now = datetime.now(UTC)
        stale = make_credential(is_active=False, current_usage=40, updated_at=now - timedelta(days=2))
        recent = make_credential(is_active=False, updated_at=now - timedelta(hours=2))

        result = admin.recover_inactive("gemini")

        assert result.success is True
        assert result.recovered == 1
        assert result.total_inactive == 1
        assert result.errors == []
        assert repository.get_by_id(stale.id).is_active is True
        assert repository.get_by_id(stale.id).usage_count == 0
        assert repository.get_by_id(recent.id).is_active is False

    def test_custom_window(self, admin, make_credential):
        make_credential(is_active=False, updated_at=datetime.now(UTC) - timedelta(hours=2))

        result = admin.recover_inactive("gemini", inactive_for=timedelta(hours=1))

        assert result.recovered == 1

    def test_collects_failures(self, admin, make_credential):
        make_credential(is_active=False, updated_at=datetime.now(UTC) - timedelta(days=3))

        with patch.object(admin, "reactivate", side_effect=KeyNotFoundError("vanished")):
            result = admin.recover_inactive("gemini")

        assert result.success is False
        assert result.recovered == 0
        assert result.total_inactive == 1
        assert len(result.errors) == 1


class TestReencrypt:
    """Test the re-encryption migration job."""

    def test_rotates_to_new_codec(self, admin, repository, make_credential, other_codec):
        secret = make_secret(510)
        credential = make_credential(secret=secret)

        assert admin.reencrypt("gemini", other_codec) == 1

        stored = repository.get_by_id(credential.id).encrypted_secret
        assert other_codec.decrypt(stored) == secret

    def test_upgrades_legacy_values(self, admin, codec, repository, make_credential):
        secret = make_secret(511)
        credential = make_credential(encrypted_key=encrypt_legacy(derive_key(TEST_PASSPHRASE), secret))

        admin.reencrypt("gemini", codec)

        stored = repository.get_by_id(credential.id).encrypted_secret
        assert not codec.is_legacy_format(stored)
        assert codec.decrypt(stored) == secret

    def test_undecryptable_value_aborts(self, admin, make_credential, other_codec, codec):
        make_credential(codec=other_codec)

        with pytest.raises(DecryptionFailedError):
            admin.reencrypt("gemini", codec)

    def test_failure_leaves_every_record_untouched(self, admin, codec, repository, make_credential, other_codec):
        """Test that one undecryptable record stops the job before any record is rewritten."""
        good = make_credential(secret=make_secret(512))
        make_credential(codec=other_codec)
        before = repository.get_by_id(good.id).encrypted_secret

        with pytest.raises(DecryptionFailedError):
            admin.reencrypt("gemini", other_codec)

        after = repository.get_by_id(good.id).encrypted_secret
        assert after == before
        assert codec.decrypt(after) == make_secret(512)

    def test_rewrites_all_records(self, admin, repository, make_credential, other_codec):
        first = make_credential(secret=make_secret(513))
        second = make_credential(secret=make_secret(514))

        assert admin.reencrypt("gemini", other_codec) == 2

        assert other_codec.decrypt(repository.get_by_id(first.id).encrypted_secret) == make_secret(513)
        assert other_codec.decrypt(repository.get_by_id(second.id).encrypted_secret) == make_secret(514)

    def test_empty_service(self, admin, other_codec):
        assert admin.reencrypt("gemini", other_codec) == 0


class TestRecoveryStats:
    """Test the recovery statistics summary."""

    def test_counts(self, admin, make_credential):
        now = datetime.now(UTC)
        make_credential()
        make_credential(expires_at=now - timedelta(hours=1))
        make_credential(is_active=False, updated_at=now - timedelta(days=2))
        make_credential(is_active=False, updated_at=now - timedelta(hours=2))

        stats = admin.get_recovery_stats("gemini")

        assert stats.service_name == "gemini"
        assert stats.total_credentials == 4
        assert stats.active_credentials == 1
        assert stats.inactive_credentials == 3
        assert stats.eligible_for_recovery == 1

    def test_matches_recover_inactive(self, admin, make_credential):
        make_credential(is_active=False, updated_at=datetime.now(UTC) - timedelta(days=3))
        make_credential(is_active=False, updated_at=datetime.now(UTC) - timedelta(days=4))

        eligible = admin.get_recovery_stats("gemini").eligible_for_recovery

        assert eligible == 2
        assert admin.recover_inactive("gemini").recovered == eligible

    def test_empty_service(self, admin):
        stats = admin.get_recovery_stats("gemini")

        assert stats.total_credentials == 0
        assert stats.eligible_for_recovery == 0
