"""
Rotation coordinator: pool-wide health checks, automatic deactivation of
failing keys, rotation after a failure and aggregate metrics.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from ..config import HealthPolicyConfig, get_config
from ..db.db_base import utc_now
from ..exceptions import DecryptionFailedError, KeyNotFoundError, QuotaExceededError
from ..repositories.credential_repository import CredentialRepository
from ..schemas.credential_schemas import (
    Credential,
    HealthRecord,
    PoolMetrics,
    RotationResult,
    SystemHealthReport,
)
from ..utils.logger import get_logger
from .credential_pool_service import CredentialPool
from .health_probe_service import HealthProbe


class RotationCoordinator:
    """
    Coordinates health checks and rotation for one or more service pools.

    Health checks fan out over a bounded thread pool; each probe uses its own
    store session, so probes of different credentials run independently.
    """

    def __init__(
        self,
        pool: CredentialPool,
        probe: HealthProbe,
        repository: CredentialRepository,
        policy: Optional[HealthPolicyConfig] = None,
    ):
        self.pool = pool
        self.probe = probe
        self.repository = repository
        self.policy = policy or get_config().health_policy
        self.logger = get_logger()

    def _probe_many(self, credentials: List[Credential]) -> List[HealthRecord]:
        if not credentials:
            return []
        workers = min(self.policy.probe_workers, len(credentials))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="credential-probe") as executor:
            # map keeps input order and re-raises the first worker exception
            return list(executor.map(self.probe.probe, credentials))

    def check_all(self, service_name: str) -> List[HealthRecord]:
        """
        Probe every credential of a service, active or not.

        Returns:
            One HealthRecord per credential, in creation order
        """
        credentials = self.repository.list_by_service(service_name)
        records = self._probe_many(credentials)

        self.logger.info(
            "Health check completed",
            extra={
                "service_name": service_name,
                "total_credentials": len(records),
                "healthy_credentials": sum(1 for r in records if r.is_healthy),
            },
        )
        return records

    def monitor_and_recover(self, service_name: str) -> List[HealthRecord]:
        """
        Deactivate every active credential that fails its health probe.

        Returns:
            The health records of the credentials that were deactivated
        """
        records = self.check_all(service_name)
        failing = [r for r in records if r.is_active and not r.is_healthy]

        for record in failing:
            self.pool.deactivate(record.credential_id, reason=record.last_error or "unhealthy")

        healthy = sum(1 for r in records if r.is_healthy)
        self.logger.info(
            "Monitoring pass finished",
            extra={
                "service_name": service_name,
                "deactivated": len(failing),
                "healthy_credentials": healthy,
            },
        )
        if healthy == 0:
            self.logger.error(
                "No healthy credentials left for service", extra={"service_name": service_name}
            )
        return failing

    def rotate(
        self,
        service_name: str,
        failed_credential_id: Optional[str] = None,
        reason: str = "service unavailable",
    ) -> RotationResult:
        """
        Retire a failed credential and pick its replacement.

        Pool exhaustion is reported as an unsuccessful result rather than raised.

        Args:
            service_name: Service whose pool to rotate
            failed_credential_id: Credential to deactivate first, if any
            reason: Why the rotation happens; recorded on the deactivation

        Returns:
            RotationResult with the replacement id on success
        """
        if failed_credential_id:
            self.pool.deactivate(failed_credential_id, reason=reason)

        try:
            replacement = self.pool.select_one(service_name)
        except (KeyNotFoundError, QuotaExceededError, DecryptionFailedError) as e:
            self.logger.error(
                "Rotation failed: no replacement credential",
                extra={
                    "service_name": service_name,
                    "previous_id": failed_credential_id,
                    "error_type": type(e).__name__,
                },
            )
            return RotationResult(
                success=False,
                previous_id=failed_credential_id,
                reason=f"{reason}; no replacement available: {e.message}",
            )

        self.logger.info(
            "Credential rotated",
            extra={
                "service_name": service_name,
                "previous_id": failed_credential_id,
                "new_id": replacement.id,
                "reason": reason,
            },
        )
        return RotationResult(
            success=True,
            previous_id=failed_credential_id,
            new_id=replacement.id,
            reason=reason,
        )

    def _build_metrics(
        self, service_name: str, credentials: List[Credential], healthy: int
    ) -> PoolMetrics:
        total = len(credentials)
        now = utc_now()
        active = sum(1 for c in credentials if c.is_live(now))
        total_usage = sum(c.usage_count for c in credentials)
        return PoolMetrics(
            service_name=service_name,
            total_credentials=total,
            active_credentials=active,
            inactive_credentials=total - active,
            healthy_credentials=healthy,
            total_usage=total_usage,
            average_usage=total_usage / total if total else 0.0,
            error_rate=(active - healthy) / active if active else 0.0,
        )

    def metrics(self, service_name: str) -> PoolMetrics:
        """Counters for a pool; only live (active, unexpired) credentials are probed for health."""
        credentials = self.repository.list_by_service(service_name)
        now = utc_now()
        records = self._probe_many([c for c in credentials if c.is_live(now)])
        return self._build_metrics(
            service_name, credentials, healthy=sum(1 for r in records if r.is_healthy)
        )

    def is_system_healthy(self, metrics: PoolMetrics) -> bool:
        return (
            metrics.healthy_credentials >= self.policy.min_healthy_credentials
            and metrics.active_credentials >= self.policy.min_active_credentials
        )

    def system_health(self, service_name: str) -> SystemHealthReport:
        """
        One probing pass over the pool, summarised with a verdict and recommendations.
        """
        credentials = self.repository.list_by_service(service_name)
        records = self._probe_many(credentials)
        metrics = self._build_metrics(
            service_name,
            credentials,
            healthy=sum(1 for r in records if r.is_active and r.is_healthy),
        )

        recommendations = []
        if metrics.healthy_credentials < max(self.policy.min_active_credentials, 1):
            recommendations.append("Consider activating more API keys")
        if metrics.error_rate > self.policy.high_error_rate:
            recommendations.append("High error rate detected; check API key validity")
        now = utc_now()
        active = [c for c in credentials if c.is_live(now)]
        if active:
            average_limit = sum(c.usage_limit for c in active) / len(active)
            if metrics.average_usage > average_limit * self.policy.usage_warning_ratio:
                recommendations.append("Usage approaching limits; consider adding more API keys")

        healthy = self.is_system_healthy(metrics)
        self.logger.info(
            "System health evaluated",
            extra={
                "service_name": service_name,
                "healthy": healthy,
                "healthy_credentials": metrics.healthy_credentials,
                "active_credentials": metrics.active_credentials,
            },
        )
        return SystemHealthReport(
            healthy=healthy,
            metrics=metrics,
            health_records=records,
            recommendations=recommendations,
        )
