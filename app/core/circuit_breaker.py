"""
Circuit breaker for external calls made while handling billing events.

Every outbound dependency of the event pipeline (Stripe customer lookups,
Stripe event listing, the IP reputation provider) is guarded by a breaker
instance that callers receive explicitly. There is no module-level breaker:
services accept one in their constructor so tests can hand in a breaker
with a private name or a fake.

State lives in the Django cache so that every web and worker process sees
the same circuit. A breaker is identified by its name; two instances built
with the same name share state.

States:
    - CLOSED: calls pass through, failures are counted
    - OPEN: calls fail fast with CircuitOpenError
    - HALF_OPEN: after the recovery timeout, a limited number of trial
      calls are let through; one success closes, one failure reopens

Usage:
    from core.circuit_breaker import CircuitBreaker

    breaker = CircuitBreaker.from_settings("stripe", prefix="STRIPE_CIRCUIT")

    with breaker.call():
        customer = StripeAdapter.retrieve_customer(customer_id)

Design Notes:
    - A cache outage never blocks traffic; the breaker reports itself
      available when it cannot read its own state
    - The clock is injectable so recovery can be tested without sleeping
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache as default_cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from django.core.cache.backends.base import BaseCache

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for a circuit breaker instance."""

    failure_threshold: int = 5
    """Consecutive failures before the circuit opens."""

    recovery_timeout: int = 60
    """Seconds the circuit stays open before probing."""

    half_open_max_calls: int = 1
    """Trial calls allowed while half-open."""

    cache_ttl: int = 3600
    """TTL of the cache keys; must exceed recovery_timeout."""


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is attempted through an open circuit.

    Signals that the dependency is being shed, not that a call failed.
    It is never recorded as a failure of the dependency itself.
    """

    default_error_code: str = "CIRCUIT_OPEN"


class CircuitBreaker:
    """
    Distributed circuit breaker backed by the Django cache.

    Attributes:
        name: Identifier shared by every instance guarding the same dependency
        config: Thresholds and timeouts

    Example:
        breaker = CircuitBreaker("ip-intel", failure_threshold=3)

        if breaker.is_available():
            try:
                result = provider.fetch(ip)
                breaker.record_success()
            except httpx.HTTPError:
                breaker.record_failure()
                raise
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
        cache: BaseCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Unique identifier (e.g. "stripe", "ip-intel")
            failure_threshold: Consecutive failures before opening
            recovery_timeout: Seconds before a half-open trial call is allowed
            half_open_max_calls: Trial calls allowed while half-open
            cache: Cache backend holding the shared state (default cache)
            clock: Time source returning epoch seconds
        """
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            half_open_max_calls=half_open_max_calls,
        )
        self._cache = cache if cache is not None else default_cache
        self._clock = clock

        self._state_key = f"circuit:{name}:state"
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"
        self._half_open_calls_key = f"circuit:{name}:half_open_calls"

    @classmethod
    def from_settings(cls, name: str, prefix: str) -> CircuitBreaker:
        """
        Build a breaker from ``<PREFIX>_FAILURE_THRESHOLD`` and
        ``<PREFIX>_RECOVERY_TIMEOUT`` settings.

        Args:
            name: Breaker name
            prefix: Settings prefix, e.g. "STRIPE_CIRCUIT"

        Returns:
            Configured CircuitBreaker
        """
        return cls(
            name=name,
            failure_threshold=getattr(settings, f"{prefix}_FAILURE_THRESHOLD", 5),
            recovery_timeout=getattr(settings, f"{prefix}_RECOVERY_TIMEOUT", 60),
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def is_available(self) -> bool:
        """
        Check whether a call may go through right now.

        Moving from OPEN to HALF_OPEN happens here, and the call that
        observes the move counts as the first trial call.
        """
        try:
            state = self._get_state()

            if state == CircuitState.CLOSED:
                return True

            if state == CircuitState.OPEN:
                opened_at = self._get_opened_at()
                elapsed = self._clock() - opened_at if opened_at else 0
                if opened_at and elapsed >= self.config.recovery_timeout:
                    self._set_state(CircuitState.HALF_OPEN)
                    self._cache.set(
                        self._half_open_calls_key, 1, timeout=self.config.cache_ttl
                    )
                    logger.info(
                        "Circuit breaker half-open, probing dependency",
                        extra={"circuit": self.name},
                    )
                    return True
                return False

            # HALF_OPEN
            if self._get_half_open_calls() < self.config.half_open_max_calls:
                self._incr(self._half_open_calls_key)
                return True
            return False

        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        """Record a successful call; closes a half-open circuit."""
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)
                logger.info(
                    "Circuit breaker closed after successful trial call",
                    extra={"circuit": self.name},
                )
            self._cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        """Record a failed call; opens the circuit at the threshold."""
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(
                    "Circuit breaker reopened after failed trial call",
                    extra={"circuit": self.name},
                )
                return

            failures = self._incr(self._failures_key)
            if failures >= self.config.failure_threshold:
                self._open()
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.config.failure_threshold,
                    },
                )
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block of code with the breaker.

        Raises:
            CircuitOpenError: The circuit is open; the block is not run

        Example:
            with breaker.call():
                StripeAdapter.retrieve_customer("cus_123")
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                details={"circuit": self.name},
            )

        try:
            yield
        except CircuitOpenError:
            raise
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()

    def reset(self) -> None:
        """Force the circuit closed and clear its counters."""
        self._cache.delete_many(
            [
                self._state_key,
                self._failures_key,
                self._opened_at_key,
                self._half_open_calls_key,
            ]
        )
        logger.info("Circuit breaker manually reset", extra={"circuit": self.name})

    def get_status(self) -> dict:
        """
        Snapshot of the breaker for health output and admin views.

        Returns:
            Dict with name, state, failure count and, when open, timing
        """
        try:
            state = self._get_state()
            status = {
                "name": self.name,
                "state": state.value,
                "failure_count": self._cache.get(self._failures_key, 0),
                "failure_threshold": self.config.failure_threshold,
            }
            opened_at = self._get_opened_at()
            if state == CircuitState.OPEN and opened_at:
                elapsed = self._clock() - opened_at
                status["recovery_in_seconds"] = max(
                    0, int(self.config.recovery_timeout - elapsed)
                )
            return status
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}

    # =========================================================================
    # Cache operations
    # =========================================================================

    def _get_state(self) -> CircuitState:
        raw = self._cache.get(self._state_key, CircuitState.CLOSED.value)
        try:
            return CircuitState(raw)
        except ValueError:
            return CircuitState.CLOSED

    def _set_state(self, state: CircuitState) -> None:
        self._cache.set(self._state_key, state.value, timeout=self.config.cache_ttl)

    def _get_opened_at(self) -> float | None:
        return self._cache.get(self._opened_at_key)

    def _get_half_open_calls(self) -> int:
        return self._cache.get(self._half_open_calls_key, 0)

    def _incr(self, key: str) -> int:
        # incr raises ValueError for a missing key
        try:
            return self._cache.incr(key)
        except ValueError:
            self._cache.set(key, 1, timeout=self.config.cache_ttl)
            return 1

    def _open(self) -> None:
        self._set_state(CircuitState.OPEN)
        self._cache.set(
            self._opened_at_key, self._clock(), timeout=self.config.cache_ttl
        )
        self._cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._get_state().value})"
