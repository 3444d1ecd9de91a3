"""
Stripe API adapter for billing reads and webhook verification.

StripeAdapter is the only module that talks to Stripe. The service never
writes to Stripe: it verifies webhooks, looks up customers for patient
matching and lists events for reconciliation. SDK objects are turned into
plain dicts and dataclasses here, so nothing downstream depends on them.

Every call is logged with its duration, and SDK exceptions are translated
into the billing exceptions in ``billing.exceptions``.

Settings read:
- STRIPE_SECRET_KEY
- STRIPE_WEBHOOK_SECRET
- STRIPE_API_TIMEOUT_SECONDS (default 10)
- STRIPE_MAX_RETRIES, SDK-level network retries (default 3)

The adapter holds no state. Callers wrap API calls in the Stripe circuit
breaker (``billing.adapters.stripe_circuit_breaker()``).

Usage:
    from billing.adapters import StripeAdapter, stripe_circuit_breaker

    with stripe_circuit_breaker().call():
        customer = StripeAdapter.retrieve_customer("cus_123")

    page = StripeAdapter.list_events(
        types=["payment_intent.succeeded"],
        created_after=timezone.now() - timedelta(hours=48),
    )
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSignatureError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

MAX_PAGE_SIZE = 100


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CustomerResult:
    """
    A Stripe customer, reduced to what patient matching needs.

    Attributes:
        id: Customer ID (cus_xxx)
        email: Email on the Stripe customer, if any
        name: Display name
        deleted: True for a customer deleted in Stripe
        metadata: Customer metadata
    """

    id: str
    email: str | None = None
    name: str | None = None
    deleted: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class EventPage:
    """
    One page of Stripe events.

    Attributes:
        events: Event payloads as plain dicts, newest first
        has_more: True if another page follows
    """

    events: list[dict[str, Any]]
    has_more: bool = False

    @property
    def last_id(self) -> str | None:
        """Cursor for the next page (``starting_after``)."""
        return self.events[-1].get("id") if self.events else None


def _as_payload(stripe_object: Any) -> dict[str, Any]:
    """Convert an SDK object to the plain dict a webhook would deliver."""
    if isinstance(stripe_object, dict) and not isinstance(
        stripe_object, stripe.StripeObject
    ):
        return stripe_object
    # StripeObject renders itself as recursive JSON
    return json.loads(str(stripe_object))


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Class-method adapter over the Stripe SDK.

    Safe to call from web and Celery workers alike.

    Usage:
        customer = StripeAdapter.retrieve_customer("cus_123")
        page = StripeAdapter.list_events(types, created_after)
        payload = StripeAdapter.verify_webhook_signature(body, header)
    """

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        stripe.default_http_client = stripe.RequestsClient(
            timeout=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def _api_call(cls, log_context: dict[str, Any]) -> Iterator[dict[str, Any]]:
        """
        Configure the SDK, time the wrapped call and translate its errors.

        Yields a dict the caller may add result fields to; they are logged
        with the completion line.
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        result_context: dict[str, Any] = {}
        started = time.monotonic()
        logger.debug("Calling Stripe", extra=log_context)
        try:
            yield result_context
        except Exception as e:
            cls._handle_stripe_error(
                e, {**log_context, "duration_ms": (time.monotonic() - started) * 1000}
            )
            raise
        logger.info(
            f"Stripe {log_context['operation']} succeeded",
            extra={
                **log_context,
                **result_context,
                "duration_ms": (time.monotonic() - started) * 1000,
            },
        )

    # =========================================================================
    # Reads
    # =========================================================================

    @classmethod
    def retrieve_customer(
        cls,
        customer_id: str,
        trace_id: str | None = None,
    ) -> CustomerResult:
        """
        Retrieve a Stripe Customer.

        Used by the patient resolver's email fallback when the event itself
        carries no email.

        Args:
            customer_id: Stripe Customer ID (cus_xxx)
            trace_id: Optional trace ID (usually the Stripe event id)

        Returns:
            CustomerResult (deleted customers come back with deleted=True)

        Raises:
            StripeInvalidRequestError: Customer does not exist
            StripeRateLimitError, StripeTimeoutError, StripeAPIUnavailableError:
                Transient failures, retry later
        """
        log_context = {
            "operation": "retrieve_customer",
            "customer_id": customer_id,
            "trace_id": trace_id,
        }
        with cls._api_call(log_context):
            customer = stripe.Customer.retrieve(customer_id)

        return CustomerResult(
            id=customer.id,
            email=getattr(customer, "email", None),
            name=getattr(customer, "name", None),
            deleted=bool(getattr(customer, "deleted", False)),
            metadata=dict(getattr(customer, "metadata", None) or {}),
        )

    @classmethod
    def list_events(
        cls,
        types: list[str],
        created_after: datetime,
        starting_after: str | None = None,
        limit: int = MAX_PAGE_SIZE,
        trace_id: str | None = None,
    ) -> EventPage:
        """
        List Stripe events for reconciliation.

        Stripe retains events for 30 days, so the window must be shorter.

        Args:
            types: Event types to include (Stripe accepts at most 20)
            created_after: Only events created at or after this time
            starting_after: Cursor, the last event id of the previous page
            limit: Page size, capped at 100
            trace_id: Optional trace ID (usually the reconciliation run id)
        """
        created_gte = int(created_after.timestamp())
        params: dict[str, Any] = {
            "types": types,
            "created": {"gte": created_gte},
            "limit": min(limit, MAX_PAGE_SIZE),
        }
        if starting_after:
            params["starting_after"] = starting_after

        log_context = {
            "operation": "list_events",
            "created_after": created_gte,
            "starting_after": starting_after,
            "trace_id": trace_id,
        }
        with cls._api_call(log_context) as result_context:
            events = stripe.Event.list(**params)
            result_context["count"] = len(events.data)

        return EventPage(
            events=[_as_payload(event) for event in events.data],
            has_more=bool(events.has_more),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Check the Stripe-Signature header and return the decoded event.

        Raises:
            WebhookSignatureError: Bad or stale signature, or a body that
                is not JSON
        """
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
            return json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(
                "Webhook signature did not verify",
                stripe_code="signature_verification_failed",
                details={"reason": str(e)},
            ) from e
        except ValueError as e:
            raise WebhookSignatureError(
                "Webhook body is not JSON",
                stripe_code="invalid_payload",
                details={"reason": str(e)},
            ) from e

    # =========================================================================
    # Error Translation
    # =========================================================================

    @classmethod
    def _handle_stripe_error(cls, error: Exception, log_context: dict[str, Any]) -> None:
        """
        Re-raise an SDK exception as a billing exception.

        Invalid requests and bad credentials are permanent
        (StripeInvalidRequestError). Everything else is transient: rate
        limits, timeouts, connection and server errors.
        """
        logger = cls.get_logger()

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                f"Stripe rejected {log_context['operation']}",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(str(error), stripe_code=error.code) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe API key rejected", extra=log_context)
            raise StripeInvalidRequestError(
                "Stripe rejected the API key",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Stripe rate limit hit", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit hit",
                stripe_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            if "timeout" in str(error).lower() or "timed out" in str(error).lower():
                logger.error("Stripe call timed out", extra=log_context)
                raise StripeTimeoutError(
                    "Stripe call timed out",
                    stripe_code="timeout",
                ) from error
            logger.error("Stripe unreachable", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe unreachable",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe server error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe server error",
                stripe_code="api_error",
            ) from error

        logger.error(
            f"Unexpected {type(error).__name__} from Stripe",
            extra=log_context,
            exc_info=True,
        )
        raise StripeAPIUnavailableError(
            f"Unexpected Stripe failure: {error}",
            stripe_code="unknown_error",
        ) from error
