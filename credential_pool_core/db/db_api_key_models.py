"""
API key model for the credential pool.

Just the data structure - selection, accounting and health logic live in
the repository and services.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class ApiKey(Base, UUIDMixin, TimestampMixin):
    """One upstream API key; the secret is stored encrypted."""

    __tablename__ = "api_keys"

    service_name = Column(String(50), nullable=False)
    key_name = Column(String(100), nullable=False)
    encrypted_key = Column(Text, nullable=False)  # "<ivHex>:<cipherHex>" or legacy "<cipherHex>"

    # Accounting
    is_active = Column(Boolean, nullable=False, default=True)
    usage_limit = Column(Integer, nullable=False, default=1000)
    current_usage = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_api_keys_service_active", "service_name", "is_active"),)

    def __repr__(self) -> str:
        return (
            f"ApiKey(id='{self.id}', service_name='{self.service_name}', "
            f"key_name='{self.key_name}', is_active={self.is_active}, "
            f"current_usage={self.current_usage}/{self.usage_limit})"
        )
