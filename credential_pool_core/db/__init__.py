"""
SQLAlchemy models and database configuration for the credential pool.
"""

from .db_api_key_models import ApiKey
from .db_base import TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    POSTGRES_DRIVER,
    close_db,
    get_db_manager,
    import_all_models,
    initialize_db,
    set_db_manager,
)

__all__ = [
    # Base definitions
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "POSTGRES_DRIVER",
    "close_db",
    "get_db_manager",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "ApiKey",
]
