"""
Engine and session plumbing for the credential store.

The repository opens one short-lived session per operation through
``DatabaseManager.new_session``; no session is bound to a thread.
"""

import os
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..constants import EnvironmentVariable
from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()

POSTGRES_DRIVER = "postgresql+psycopg"


class DatabaseConfig(BaseModel):
    """Location of the credential store; ``url`` wins over the individual parts."""

    db_type: str = "postgres"
    database: str = ""
    host: Optional[str] = None
    port: str = "5432"
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    url: Optional[str] = Field(default=None, repr=False)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """
        Build the store configuration from the environment.

        ``DATABASE_URL`` is used when set (bare ``postgres://`` URLs get the
        psycopg driver); otherwise Postgres settings come from ``DB_*`` variables.
        """
        url = os.getenv(EnvironmentVariable.DATABASE_URL.value)
        if url:
            scheme, _, rest = url.partition("://")
            if scheme in ("postgres", "postgresql"):
                url = f"{POSTGRES_DRIVER}://{rest}"
            parsed = make_url(url)
            return cls(
                db_type="sqlite" if parsed.get_backend_name() == "sqlite" else "postgres",
                database=parsed.database or "",
                url=url,
                echo=os.getenv("DB_ECHO", "false").lower() == "true",
            )

        return cls(
            db_type="postgres",
            host=os.getenv("DB_HOST", "localhost"),
            port=os.getenv("DB_PORT", "5432"),
            database=os.getenv("DB_NAME", "credential_pool"),
            username=os.getenv("DB_USER", "postgres"),
            password=os.getenv("DB_PASSWORD", ""),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
        )

    @property
    def is_sqlite(self) -> bool:
        return self.db_type.lower() == "sqlite"

    def get_connection_string(self) -> str:
        if self.url:
            return self.url

        db_type = self.db_type.lower()
        if db_type == "sqlite":
            return f"sqlite:///{self.database}"
        if db_type != "postgres":
            raise ValidationError(
                f"Unsupported database type: {self.db_type}",
                error_code=ErrorCode.INVALID_FORMAT,
                field="db_type",
                db_type=self.db_type,
            )

        missing = [name for name in ("host", "database", "username", "password") if not getattr(self, name)]
        if missing:
            raise ValidationError(
                f"Missing required Postgres settings: {', '.join(missing)}",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="database_config",
                missing=missing,
            )
        return (
            f"{POSTGRES_DRIVER}://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}"
        )


class DatabaseManager:
    """Owns the engine and hands out independent sessions."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _create_engine(self) -> Engine:
        connection_string = self.config.get_connection_string()
        if self.config.is_sqlite:
            # sessions are opened from probe worker threads; wait on a locked file
            return create_engine(
                connection_string,
                echo=self.config.echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        return create_engine(
            connection_string,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def new_session(self) -> Session:
        return self.session_factory()

    def create_tables(self) -> None:
        import_all_models()
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Cannot drop tables: not in development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
                development_mode=self.config.development_mode,
            )
        Base.metadata.drop_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()


def import_all_models():
    """Import all models so they are registered with the SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_api_key_models import ApiKey  # noqa

    configure_mappers()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.

    Raises:
        ServiceError: If no database manager has been initialized
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Create the global database manager and make sure the ``api_keys`` table exists.

    Args:
        config: Store configuration; read from the environment when omitted
    """
    global _db_manager

    config = config or DatabaseConfig.from_env()
    get_logger().info("Initializing credential database", extra={"db_type": config.db_type})
    _db_manager = DatabaseManager(config)
    _db_manager.create_tables()
    return _db_manager


def close_db() -> None:
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
