"""
Base exception classes shared by every app.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input (e.g. an event payload missing fields)
    ├── NotFoundError - A record that must exist does not
    ├── ConflictError - Natural-key or state conflicts
    │   └── LockAcquisitionError - A distributed lock is held elsewhere
    └── ExternalServiceError - Stripe, IP reputation provider, cache outages

Every error carries a machine-readable ``error_code`` and a ``details`` dict.
Dead-letter entries store both, so an operator reading the queue sees the
same code the log line carried.

Usage:
    from core.exceptions import ExternalServiceError

    raise ExternalServiceError(
        "IP reputation provider returned 503",
        error_code="IP_INTEL_UNAVAILABLE",
        details={"status_code": 503},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code
        details: Additional context (ids, counts, upstream status codes)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a JSON-serializable dict.

        Example:
            {
                "error": "Event payload has no id",
                "error_code": "EVENT_PARSE_ERROR",
                "details": {"event_type": "charge.succeeded"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Raised when input does not have the shape the code relies on."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a record that must exist is missing.

    An unresolved billing customer is NOT a NotFoundError: that is an
    expected outcome and is returned as ``None`` by the resolver.
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with stored state.

    Use for:
    - A natural-key insert that lost a race and cannot be resolved
    - Overlapping runs of a job that must not overlap
    """

    default_error_code: str = "CONFLICT"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock is held by another process."""

    default_error_code: str = "LOCK_HELD"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external dependency fails.

    Use for:
    - Stripe API errors (see billing.exceptions for the Stripe hierarchy)
    - IP reputation provider errors and timeouts
    - Open circuit breakers (core.circuit_breaker.CircuitOpenError)
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
