"""
Test fixtures for the credential pool.

Provides a file-backed SQLite database per test (so threads share one store),
a codec, the repository and the pool, and a factory for credential rows.
"""

import pytest

from credential_pool_core.config import (
    HealthPolicyConfig,
    RetryConfig,
    UpstreamConfig,
    reset_config,
)
from credential_pool_core.db import DatabaseConfig, DatabaseManager
from credential_pool_core.repositories.credential_repository import CredentialRepository
from credential_pool_core.services.credential_pool_service import CredentialPool
from credential_pool_core.utils.encryption_utils import SecretCodec
from credential_pool_core.utils.logger import reset_logging
from tests.fixtures.factories import ApiKeyFactory

TEST_PASSPHRASE = "test-passphrase-do-not-use"


@pytest.fixture(autouse=True)
def reset_globals():
    """Keep configuration and logger globals from leaking between tests."""
    reset_config()
    reset_logging()
    yield
    reset_config()
    reset_logging()


@pytest.fixture(scope="function")
def db_config(tmp_path) -> DatabaseConfig:
    """SQLite file database in the test's temp directory."""
    return DatabaseConfig(
        db_type="sqlite",
        database=str(tmp_path / "credentials.db"),
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="function")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Database manager with a freshly created schema."""
    manager = DatabaseManager(db_config)
    manager.create_tables()

    factory_session = manager.new_session()
    ApiKeyFactory._meta.sqlalchemy_session = factory_session

    yield manager

    ApiKeyFactory._meta.sqlalchemy_session = None
    factory_session.close()
    manager.drop_tables()
    manager.close()


@pytest.fixture(scope="session")
def codec() -> SecretCodec:
    """Session-scoped: key derivation is deliberately slow."""
    return SecretCodec(TEST_PASSPHRASE)


@pytest.fixture(scope="session")
def other_codec() -> SecretCodec:
    return SecretCodec("another-passphrase")


@pytest.fixture
def repository(db_manager: DatabaseManager) -> CredentialRepository:
    return CredentialRepository(db_manager)


@pytest.fixture
def health_policy() -> HealthPolicyConfig:
    return HealthPolicyConfig(probe_workers=4)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=30.0)


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(
        base_url="https://upstream.test/v1beta",
        probe_timeout_seconds=10,
        request_timeout_seconds=30,
    )


@pytest.fixture
def pool(repository, codec, health_policy) -> CredentialPool:
    return CredentialPool(repository, codec, health_policy=health_policy)


@pytest.fixture
def make_credential(repository, codec):
    """
    Insert an API key row and return it as a ``Credential`` record.

    Keyword arguments are ApiKeyFactory attributes (``current_usage``,
    ``is_active``, ``secret``...). Creation order follows call order.
    """

    def _make(**kwargs):
        kwargs.setdefault("codec", codec)
        row = ApiKeyFactory(**kwargs)
        return repository.get_by_id(row.id)

    return _make
