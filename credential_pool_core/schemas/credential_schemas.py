"""
Pydantic schemas for pooled credentials and the reports built from them.

Rows read from the store are validated into these types at the repository
boundary, so services never see raw ORM objects.
"""

from datetime import UTC, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from ..constants import Limits
from ..db.db_base import ensure_utc


def _now() -> datetime:
    return datetime.now(UTC)


class BaseCredentialSchema(BaseModel):
    """Base schema for credential records."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )


class CredentialCreate(BaseCredentialSchema):
    """Payload for inserting a new credential; the secret is already encrypted."""

    service_name: str = Field(..., min_length=1, max_length=Limits.MAX_SERVICE_NAME_LENGTH)
    display_name: str = Field(..., min_length=1, max_length=Limits.MAX_DISPLAY_NAME_LENGTH)
    encrypted_secret: str = Field(..., min_length=1)
    is_active: bool = True
    usage_limit: int = Field(default=Limits.DEFAULT_USAGE_LIMIT, gt=0)
    usage_count: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("expires_at", "created_at")
    @classmethod
    def normalise_timezone(cls, v):
        return ensure_utc(v)


class Credential(BaseCredentialSchema):
    """A credential record as stored, with its secret still encrypted."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    service_name: str
    display_name: str
    encrypted_secret: str = Field(repr=False)
    is_active: bool
    usage_count: int = Field(ge=0)
    usage_limit: int = Field(ge=0)
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def normalise_timezone(cls, v):
        """SQLite hands back naive datetimes; everything stored is UTC."""
        return ensure_utc(v)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _now())

    @property
    def is_over_limit(self) -> bool:
        return self.usage_count >= self.usage_limit

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Active and not expired; a stale active flag on an expired key does not count."""
        return self.is_active and not self.is_expired(now)


class DecryptedCredential(Credential):
    """A credential together with its plaintext secret, handed to callers only."""

    secret: SecretStr

    def get_secret(self) -> str:
        return self.secret.get_secret_value()


class HealthRecord(BaseModel):
    """Outcome of probing one credential."""

    credential_id: str
    display_name: str
    is_active: bool
    is_healthy: bool
    checked_at: datetime = Field(default_factory=_now)
    error_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


class PoolMetrics(BaseModel):
    """Aggregate counters for one service's pool."""

    service_name: str
    total_credentials: int = 0
    active_credentials: int = 0
    inactive_credentials: int = 0
    healthy_credentials: int = 0
    total_usage: int = 0
    average_usage: float = 0.0
    error_rate: float = 0.0


class RotationResult(BaseModel):
    """Outcome of rotating away from a failed credential."""

    success: bool
    previous_id: Optional[str] = None
    new_id: Optional[str] = None
    reason: str
    timestamp: datetime = Field(default_factory=_now)


class UsageSummary(BaseModel):
    """How much of its quota a credential has consumed."""

    credential_id: str
    display_name: str
    usage_count: int
    usage_limit: int
    usage_percentage: float
    is_near_limit: bool


class SystemHealthReport(BaseModel):
    healthy: bool
    metrics: PoolMetrics
    health_records: List[HealthRecord] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=_now)


class RecoveryResult(BaseModel):
    """Outcome of an administrative recovery run."""

    success: bool
    recovered: int = 0
    total_inactive: int = 0
    errors: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now)


class RecoveryStats(BaseModel):
    """Counts describing what a recovery run would find."""

    service_name: str
    total_credentials: int = 0
    active_credentials: int = 0
    inactive_credentials: int = 0
    eligible_for_recovery: int = 0
    last_updated: datetime = Field(default_factory=_now)
