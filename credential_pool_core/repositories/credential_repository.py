"""
Data access for pooled credentials.

Every operation runs in its own short-lived session, so one repository
instance can be shared by concurrent callers. Nothing is cached: usage
counters and active flags are always read from the database.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_api_key_models import ApiKey
from ..db.db_base import utc_now
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import DatabaseError, ValidationError
from ..schemas.credential_schemas import Credential, CredentialCreate
from ..utils.logger import get_logger

# schema field -> column
_FIELD_COLUMNS = {
    "display_name": "key_name",
    "encrypted_secret": "encrypted_key",
    "is_active": "is_active",
    "usage_count": "current_usage",
    "usage_limit": "usage_limit",
    "expires_at": "expires_at",
}


class CredentialRepository:
    """Reads and writes ``api_keys`` rows and returns validated ``Credential`` records."""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or get_db_manager()
        self.logger = get_logger()

    @contextmanager
    def session_scope(self, operation: str, **context: Any) -> Iterator[Session]:
        """
        Provide a session that commits on success and always closes.

        SQLAlchemy failures are rolled back and re-raised as DatabaseError
        carrying the operation name and the given context.
        """
        session = self.db_manager.new_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError(
                f"Credential store {operation} failed: {e}",
                cause=e,
                operation=operation,
                **context,
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _to_schema(row: ApiKey) -> Credential:
        return Credential.model_validate(
            {
                "id": row.id,
                "service_name": row.service_name,
                "display_name": row.key_name,
                "encrypted_secret": row.encrypted_key,
                "is_active": row.is_active,
                "usage_count": row.current_usage,
                "usage_limit": row.usage_limit,
                "expires_at": row.expires_at,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
            }
        )

    def list_by_service(self, service_name: str, active_only: bool = False) -> List[Credential]:
        """
        List the credentials of a service.

        Args:
            service_name: Service whose pool to read
            active_only: Only return rows flagged active, least used first

        Returns:
            Credentials ordered by (usage, created_at) when ``active_only``,
            otherwise by creation time
        """
        stmt = select(ApiKey).where(ApiKey.service_name == service_name)
        if active_only:
            stmt = stmt.where(ApiKey.is_active.is_(True)).order_by(
                ApiKey.current_usage.asc(), ApiKey.created_at.asc(), ApiKey.id.asc()
            )
        else:
            stmt = stmt.order_by(ApiKey.created_at.asc(), ApiKey.id.asc())

        with self.session_scope(
            "list_by_service", service_name=service_name, active_only=active_only
        ) as session:
            return [self._to_schema(row) for row in session.scalars(stmt)]

    def get_by_id(self, credential_id: str) -> Optional[Credential]:
        with self.session_scope("get_by_id", credential_id=credential_id) as session:
            row = session.get(ApiKey, credential_id)
            return self._to_schema(row) if row is not None else None

    def update_fields(self, credential_id: str, **fields: Any) -> bool:
        """
        Update selected fields of one credential.

        Args:
            credential_id: Credential to update
            **fields: Schema field names (``is_active``, ``usage_count``, ...) and values

        Returns:
            True if a row was updated, False if the id is unknown

        Raises:
            ValidationError: If a field name is not updatable
        """
        unknown = set(fields) - set(_FIELD_COLUMNS)
        if unknown:
            raise ValidationError(
                f"Cannot update credential fields: {', '.join(sorted(unknown))}",
                field="fields",
                credential_id=credential_id,
            )

        values: Dict[str, Any] = {_FIELD_COLUMNS[name]: value for name, value in fields.items()}
        values["updated_at"] = utc_now()

        stmt = update(ApiKey).where(ApiKey.id == credential_id).values(**values)
        with self.session_scope(
            "update_fields", credential_id=credential_id, fields=sorted(fields)
        ) as session:
            result = session.execute(stmt)
            updated = result.rowcount > 0

        self.logger.debug(
            "Credential fields updated",
            extra={"credential_id": credential_id, "fields": sorted(fields), "updated": updated},
        )
        return updated

    def insert(self, data: CredentialCreate) -> Credential:
        now = utc_now()
        row = ApiKey(
            service_name=data.service_name,
            key_name=data.display_name,
            encrypted_key=data.encrypted_secret,
            is_active=data.is_active,
            usage_limit=data.usage_limit,
            current_usage=data.usage_count,
            expires_at=data.expires_at,
            created_at=data.created_at or now,
            updated_at=now,
        )
        with self.session_scope("insert", service_name=data.service_name) as session:
            session.add(row)
            session.flush()
            credential = self._to_schema(row)

        self.logger.info(
            "Credential inserted",
            extra={
                "credential_id": credential.id,
                "service_name": credential.service_name,
                "display_name": credential.display_name,
            },
        )
        return credential

    def increment_usage(self, credential_id: str) -> bool:
        """
        Atomically add one to a credential's usage counter.

        Runs as a single ``UPDATE ... SET current_usage = current_usage + 1`` so
        concurrent increments are never lost.

        Returns:
            True if the credential exists
        """
        stmt = (
            update(ApiKey)
            .where(ApiKey.id == credential_id)
            .values(current_usage=ApiKey.current_usage + 1, updated_at=utc_now())
        )
        with self.session_scope("increment_usage", credential_id=credential_id) as session:
            return session.execute(stmt).rowcount > 0

    def reset_usage(self, service_name: str) -> int:
        """Zero the usage counter of every credential of a service; returns rows affected."""
        stmt = (
            update(ApiKey)
            .where(ApiKey.service_name == service_name)
            .values(current_usage=0, updated_at=utc_now())
        )
        with self.session_scope("reset_usage", service_name=service_name) as session:
            return session.execute(stmt).rowcount

    def list_inactive_since(self, service_name: str, cutoff: datetime) -> List[Credential]:
        """Inactive credentials of a service last updated before ``cutoff``."""
        return [
            credential
            for credential in self.list_by_service(service_name)
            if not credential.is_active and credential.updated_at < cutoff
        ]

    def replace_secrets(self, ciphertexts: Dict[str, str]) -> int:
        """
        Overwrite the stored ciphertext of several credentials in one transaction.

        Either every row is rewritten or, on failure, none is.

        Args:
            ciphertexts: Credential id -> new encrypted secret

        Returns:
            Number of rows rewritten
        """
        now = utc_now()
        rewritten = 0
        with self.session_scope("replace_secrets", credentials=len(ciphertexts)) as session:
            for credential_id, encrypted_secret in ciphertexts.items():
                stmt = (
                    update(ApiKey)
                    .where(ApiKey.id == credential_id)
                    .values(encrypted_key=encrypted_secret, updated_at=now)
                )
                rewritten += session.execute(stmt).rowcount
        return rewritten
