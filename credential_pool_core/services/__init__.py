"""Service layer for credential pooling, health and rotation."""

from .credential_admin_service import CredentialAdminService
from .credential_pool_service import CredentialPool
from .health_probe_service import HealthProbe, reason_for_status
from .resilient_invoker import ResilientInvoker, classify_error
from .rotation_service import RotationCoordinator

__all__ = [
    "CredentialAdminService",
    "CredentialPool",
    "HealthProbe",
    "ResilientInvoker",
    "RotationCoordinator",
    "classify_error",
    "reason_for_status",
]
