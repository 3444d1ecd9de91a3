"""
Billing-specific exceptions.

Exception Hierarchy:
    BillingError (base for the billing domain)
    ├── EventParseError - A verified payload without the shape we rely on
    ├── DispatchTimeoutError - Effect application exceeded its time budget
    └── StripeError - Base for all Stripe errors
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        │   └── WebhookSignatureError - Signature verification failed
        ├── StripeRateLimitError - Rate limited (transient)
        ├── StripeAPIUnavailableError - API unavailable (transient)
        └── StripeTimeoutError - Request timeout (transient)

    ReconciliationLockError - Another sweep holds the lock (inherits ConflictError)

Usage:
    from billing.exceptions import EventParseError, StripeError

    try:
        page = StripeAdapter.list_events(types, created_after)
    except StripeError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Billing Domain Exceptions
# =============================================================================


class BillingError(BaseApplicationError):
    """
    Base exception for the billing domain.

    Every exception raised while applying an event's effects ends up in a
    DeadLetterEntry with its error_code, so codes here are stable strings
    operators can filter on.
    """

    default_error_code: str = "BILLING_ERROR"


class EventParseError(BillingError):
    """
    Raised when a signature-verified payload cannot be turned into an event.

    The gateway acknowledges these with 200: retrying a malformed payload
    would fail the same way forever.

    Example:
        if not payload.get("id"):
            raise EventParseError(
                "Event payload has no id",
                details={"event_type": payload.get("type")},
            )
    """

    default_error_code: str = "EVENT_PARSE_ERROR"


class DispatchTimeoutError(BillingError):
    """
    Raised when an event's effects exceed WEBHOOK_PROCESSING_BUDGET_SECONDS.

    The attempt is abandoned to the dead-letter queue; replay or the next
    reconciliation sweep applies it later.
    """

    default_error_code: str = "DISPATCH_TIMEOUT"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(BillingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code, when one was returned
        is_retryable: True for transient failures (rate limits, outages)

    Example:
        try:
            StripeAdapter.retrieve_customer("cus_123")
        except StripeError as e:
            if e.is_retryable:
                schedule_retry()
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeInvalidRequestError(StripeError):
    """
    Invalid request sent to Stripe, or an object that does not exist.

    Also raised for authentication failures (bad API key), which need an
    operator rather than a retry.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class WebhookSignatureError(StripeInvalidRequestError):
    """
    Webhook payload failed Stripe-Signature verification.

    Either the payload was tampered with, the timestamp is outside the
    tolerance window, or STRIPE_WEBHOOK_SECRET does not match the endpoint.
    """

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers network connectivity issues, Stripe 5xx responses and any
    unexpected SDK error.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out after STRIPE_API_TIMEOUT_SECONDS.

    Every call this service makes is a read, so a retry is always safe.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class ReconciliationLockError(ConflictError):
    """
    Raised when a reconciliation sweep is already running.

    The sweep service turns this into a ``skipped`` result; it only escapes
    to callers that ask for the lock explicitly.
    """

    default_error_code: str = "RECONCILIATION_LOCKED"


__all__ = [
    "BillingError",
    "EventParseError",
    "DispatchTimeoutError",
    "StripeError",
    "StripeInvalidRequestError",
    "WebhookSignatureError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    "ReconciliationLockError",
]
