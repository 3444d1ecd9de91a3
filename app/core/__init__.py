"""
Core Application - Infrastructure & Base Classes

Shared building blocks for the billing, patients, affiliates and refills apps.
No domain logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Database helpers (import from core.db):
    - insert_or_get: Natural-key insert that resolves conflicts to the stored row

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Resilience (import from core.circuit_breaker):
    - CircuitBreaker, CircuitOpenError

Alerting (import from core.alerts):
    - send_alert: Fire-and-forget operator alert

Exceptions (import from core.exceptions):
    - BaseApplicationError, ValidationError, NotFoundError,
      ConflictError, ExternalServiceError

Helpers (import from core.helpers):
    - hash_ip: Salted SHA-256 of an IP address
    - normalize_email: Lower-cased, trimmed email for matching

Note:
    Models, mixins and anything touching the ORM are NOT imported here to
    avoid AppRegistryNotReady errors. Import them from their modules.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from .helpers import hash_ip, normalize_email
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    # Helpers
    "hash_ip",
    "normalize_email",
]
