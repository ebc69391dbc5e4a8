"""
Base column helpers shared by the credential models.

Works on both SQLite (development, tests) and PostgreSQL (production).
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String


def utc_now():
    """Return current UTC time with timezone info attached."""
    return datetime.now(UTC)


def ensure_utc(value):
    """Attach UTC to naive datetimes; SQLite drops tzinfo on the way out."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class TimestampMixin:
    """Simple mixin for created_at/updated_at timestamps."""

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class UUIDMixin:
    """Simple mixin for UUID primary keys."""

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
