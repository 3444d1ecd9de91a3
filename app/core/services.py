"""
Service layer base patterns.

- ServiceResult: success/failure wrapper for expected outcomes
- BaseService: logger and transaction helpers shared by services

Services own business logic. Views translate HTTP, tasks translate Celery,
models hold data. A service returns a ServiceResult for outcomes the caller
is expected to branch on (a replay that failed again, a run that was
skipped) and raises for faults.

Usage:
    from core.services import BaseService, ServiceResult

    class DeadLetterReplayService(BaseService):
        def replay(self, entry) -> ServiceResult[DispatchOutcome]:
            outcome = self.dispatcher.dispatch(event, source="replay")
            if not outcome.applied:
                return ServiceResult.failure(outcome.error, "REPLAY_FAILED")
            return ServiceResult.success(outcome)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Error message if failed
        error_code: Machine-readable error code
        details: Extra context for the failure
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success()."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            details: Extra context
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            details=details or {},
        )

    @classmethod
    def from_exception(
        cls, exc: Exception, error_code: str | None = None
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own code and details; anything else
        gets the exception class name as its code.
        """
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=str(exc),
            error_code=code or exc.__class__.__name__.upper(),
            details=dict(getattr(exc, "details", {}) or {}),
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to a JSON-serializable response body."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for services.

    Provides a per-class logger and an explicit transaction boundary.
    Services that depend on external collaborators (circuit breakers,
    providers, other services) take them as constructor arguments.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls, savepoint: bool = True) -> Generator[None, None, None]:
        """
        Run the enclosed block in a database transaction.

        Nested use creates a savepoint, so an inner failure rolls back only
        the inner block when the caller catches it.
        """
        with transaction.atomic(savepoint=savepoint):
            yield
