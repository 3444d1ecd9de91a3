"""
Idempotent event dispatch.

The dispatcher turns a parsed event into local effects exactly once:

    1. insert_or_get the PaymentEvent by Stripe event id; a processed row
       returns a duplicate outcome without touching anything else
    2. claim the row (PROCESSING, attempts + 1) and, inside one
       transaction, re-read it with select_for_update
    3. run the handler registered for the event's variant
    4. commit the effects together with status PROCESSED

Any exception in steps 3-4 rolls the effects back, marks the event
FAILED and writes (or updates) its DeadLetterEntry. Nothing is re-raised:
the caller always gets a DispatchOutcome. The only exceptions that escape
are failures to record the failure itself.

Handlers:
    PaymentSucceeded     supersession → resolve patient → commission →
                         refill match
    PaymentReversed      commission reversal
    SubscriptionChanged  subscription sync
    UnhandledEvent       recorded and skipped

Usage:
    from billing.dispatcher import EventDispatcher
    from billing.events import parse_event

    outcome = EventDispatcher().dispatch(parse_event(payload))
    if not outcome.applied:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from affiliates.services import CommissionEngine
from billing.events import (
    PaymentReversed,
    PaymentSucceeded,
    SubscriptionChanged,
    UnhandledEvent,
)
from billing.exceptions import DispatchTimeoutError
from billing.models import DeadLetterEntry, PaymentEvent
from billing.services.subscription_sync import SubscriptionSynchronizer
from billing.state_machines import PAYMENT_KINDS, EventSource, PaymentEventStatus
from core.db import insert_or_get
from core.services import BaseService
from patients.models import Clinic
from patients.services import PatientResolver
from refills.services import RefillAutoMatcher

if TYPE_CHECKING:
    from datetime import datetime

    from billing.events import BillingEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Outcome & Deadline
# =============================================================================


@dataclass
class DispatchOutcome:
    """
    Result of dispatching one event.

    Attributes:
        event_id: Stripe event id
        applied: True if this call ran effect application to completion and
            committed. Deliberate skips count as applied; the reason is in
            ``details["skipped"]``.
        details: Summary of what happened (also stored on the PaymentEvent)
        error: Failure message when not applied because of an error
        error_code: Machine-readable failure code
    """

    event_id: str
    applied: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None

    @property
    def duplicate(self) -> bool:
        return bool(self.details.get("duplicate"))

    @property
    def skipped(self) -> bool:
        return "skipped" in self.details

    @property
    def failed(self) -> bool:
        return self.error is not None

    def as_response(self) -> dict[str, Any]:
        """Body the webhook gateway answers with."""
        return {
            "received": True,
            "event_id": self.event_id,
            "applied": self.applied,
            "details": self.details,
        }


class Deadline:
    """
    Cooperative processing budget.

    Checked between steps; it cannot interrupt a step already running.

    Example:
        deadline = Deadline(10.0)
        deadline.check("commission attribution")
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, step: str) -> None:
        """
        Raise if the budget is spent.

        Raises:
            DispatchTimeoutError: Budget exceeded before ``step``
        """
        if self.expired:
            raise DispatchTimeoutError(
                f"Processing budget of {self.seconds}s exceeded before {step}",
                details={"step": step, "budget_seconds": self.seconds},
            )


# =============================================================================
# Handler Registry
# =============================================================================

Handler = Callable[["EventDispatcher", Any, PaymentEvent, Deadline], dict]

# Maps event variant classes to handler functions
EVENT_HANDLERS: dict[type, Handler] = {}


def register_handler(variant: type) -> Callable[[Handler], Handler]:
    """
    Decorator to register the handler for an event variant.

    Usage:
        @register_handler(PaymentReversed)
        def handle_reversal(dispatcher, event, record, deadline) -> dict:
            ...
    """

    def decorator(func: Handler) -> Handler:
        EVENT_HANDLERS[variant] = func
        return func

    return decorator


@register_handler(PaymentSucceeded)
def handle_payment(
    dispatcher: EventDispatcher,
    event: PaymentSucceeded,
    record: PaymentEvent,
    deadline: Deadline,
) -> dict[str, Any]:
    """Commission attribution and refill matching for a successful payment."""
    reason = event.superseded_reason()
    if reason:
        return {"skipped": f"superseded: {reason}"}

    already_applied = (
        PaymentEvent.objects.filter(
            payment_reference=event.payment_reference,
            kind__in=PAYMENT_KINDS,
            status=PaymentEventStatus.PROCESSED,
        )
        .exclude(pk=record.pk)
        .exclude(outcome__has_key="skipped")
        .exists()
    )
    if already_applied:
        return {
            "skipped": "superseded: payment already applied",
            "payment_reference": event.payment_reference,
        }

    deadline.check("patient resolution")
    clinic = dispatcher.resolve_clinic(event)
    resolved = dispatcher.resolver.resolve(
        event.customer_id, clinic_hint=clinic, email_hint=event.email
    )
    if resolved is None:
        logger.info(
            "Payment skipped: unresolved customer",
            extra={"stripe_event_id": event.event_id, "customer_id": event.customer_id},
        )
        return {"skipped": "unresolved customer", "customer_id": event.customer_id}

    record.patient = resolved.patient
    record.clinic = resolved.clinic

    deadline.check("commission attribution")
    attribution = dispatcher.commission_engine.attribute(event, resolved.patient)

    deadline.check("refill matching")
    refill_ids = dispatcher.refill_matcher.auto_match(
        resolved.patient,
        resolved.clinic,
        event.payment_reference,
        amount_cents=event.amount_cents,
        invoice_reference=event.invoice_id,
    )

    return {
        "patient_id": resolved.patient.pk,
        "clinic_id": resolved.clinic.pk,
        "linked_via": resolved.linked_via,
        "payment_reference": event.payment_reference,
        **attribution.as_details(),
        "refill_entry_ids": [str(pk) for pk in refill_ids],
    }


@register_handler(PaymentReversed)
def handle_reversal(
    dispatcher: EventDispatcher,
    event: PaymentReversed,
    record: PaymentEvent,
    deadline: Deadline,
) -> dict[str, Any]:
    """Claw back commissions on a refund or dispute."""
    deadline.check("commission reversal")
    reversed_events = dispatcher.commission_engine.reverse(event)
    if reversed_events:
        record.patient_id = reversed_events[0].patient_id
        record.clinic_id = reversed_events[0].clinic_id
    return {
        "reversal": event.reason,
        "payment_reference": event.payment_reference,
        "reversed_commission_ids": [str(c.pk) for c in reversed_events],
    }


@register_handler(SubscriptionChanged)
def handle_subscription(
    dispatcher: EventDispatcher,
    event: SubscriptionChanged,
    record: PaymentEvent,
    deadline: Deadline,
) -> dict[str, Any]:
    """Project the subscription change."""
    deadline.check("subscription sync")
    subscription = dispatcher.subscription_sync.sync(
        event, clinic_hint=dispatcher.resolve_clinic(event)
    )
    if subscription is None:
        return {"skipped": "unresolved customer", "customer_id": event.customer_id}

    record.patient_id = subscription.patient_id
    record.clinic_id = subscription.clinic_id
    return {
        "subscription_id": event.subscription_id,
        "subscription_status": subscription.status,
        "billing_interval": subscription.billing_interval,
    }


@register_handler(UnhandledEvent)
def handle_unhandled(
    dispatcher: EventDispatcher,
    event: UnhandledEvent,
    record: PaymentEvent,
    deadline: Deadline,
) -> dict[str, Any]:
    return {"skipped": "ignored event type"}


# =============================================================================
# Dispatcher
# =============================================================================


class EventDispatcher(BaseService):
    """
    Apply an event's local effects exactly once.

    Collaborators are injected so tests can swap any of them.

    Args:
        resolver: Patient resolver (default: PatientResolver())
        commission_engine: Commission engine (default: CommissionEngine())
        refill_matcher: Refill matcher (default: RefillAutoMatcher())
        subscription_sync: Subscription synchronizer (default: built on
            the same resolver)
        budget_seconds: Processing budget (default:
            settings.WEBHOOK_PROCESSING_BUDGET_SECONDS)
        clock: Monotonic clock for the deadline
    """

    def __init__(
        self,
        resolver: PatientResolver | None = None,
        commission_engine: CommissionEngine | None = None,
        refill_matcher: RefillAutoMatcher | None = None,
        subscription_sync: SubscriptionSynchronizer | None = None,
        budget_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resolver = resolver or PatientResolver()
        self.commission_engine = commission_engine or CommissionEngine()
        self.refill_matcher = refill_matcher or RefillAutoMatcher()
        self.subscription_sync = subscription_sync or SubscriptionSynchronizer(
            resolver=self.resolver
        )
        if budget_seconds is None:
            budget_seconds = settings.WEBHOOK_PROCESSING_BUDGET_SECONDS
        self.budget_seconds = budget_seconds
        self.clock = clock

    def dispatch(
        self, event: BillingEvent, source: str = EventSource.WEBHOOK
    ) -> DispatchOutcome:
        """
        Dispatch one event.

        Args:
            event: Parsed event
            source: EventSource the event arrived through

        Returns:
            DispatchOutcome; never raises for processing failures
        """
        log = self.get_logger()
        deadline = Deadline(self.budget_seconds, clock=self.clock)
        start_time = time.time()
        log_context = {
            "stripe_event_id": event.event_id,
            "event_type": event.event_type,
            "event_source": str(source),
        }

        record, created = insert_or_get(
            PaymentEvent,
            stripe_event_id=event.event_id,
            defaults=self._record_fields(event, source),
        )
        if not created and record.status == PaymentEventStatus.PROCESSED:
            log.info("Event already processed", extra=log_context)
            return self._duplicate(event)

        claimed = (
            PaymentEvent.objects.filter(pk=record.pk)
            .exclude(status=PaymentEventStatus.PROCESSED)
            .update(
                status=PaymentEventStatus.PROCESSING,
                attempts=F("attempts") + 1,
                updated_at=timezone.now(),
            )
        )
        if not claimed:
            log.info("Event processed concurrently", extra=log_context)
            return self._duplicate(event)

        try:
            with transaction.atomic():
                locked = PaymentEvent.objects.select_for_update().get(pk=record.pk)
                if locked.status == PaymentEventStatus.PROCESSED:
                    log.info("Event processed concurrently", extra=log_context)
                    return self._duplicate(event)

                handler = EVENT_HANDLERS.get(type(event), handle_unhandled)
                details = handler(self, event, locked, deadline)
                deadline.check("commit")

                now = timezone.now()
                locked.status = PaymentEventStatus.PROCESSED
                locked.processed_at = now
                locked.error_message = ""
                locked.outcome = details
                locked.save(
                    update_fields=[
                        "status",
                        "processed_at",
                        "error_message",
                        "outcome",
                        "patient",
                        "clinic",
                        "updated_at",
                    ]
                )
                DeadLetterEntry.objects.filter(
                    source_event_id=event.event_id, resolved_at__isnull=True
                ).update(resolved_at=now, updated_at=now)
        except Exception as exc:
            return self._fail(record, event, exc, log_context)

        duration_ms = (time.time() - start_time) * 1000
        log.info(
            "Event processed",
            extra={
                **log_context,
                "skipped_reason": details.get("skipped"),
                "duration_ms": duration_ms,
            },
        )
        return DispatchOutcome(event_id=event.event_id, applied=True, details=details)

    def resolve_clinic(self, event: BillingEvent) -> Clinic | None:
        """
        Clinic an event belongs to.

        Order: connected account, then ``metadata.clinic_id``, then
        settings.DEFAULT_CLINIC_ID.
        """
        if event.account:
            clinic = Clinic.objects.filter(stripe_account_id=event.account).first()
            if clinic is not None:
                return clinic

        clinic_id = event.metadata.get("clinic_id")
        if clinic_id and clinic_id.isdigit():
            clinic = Clinic.objects.filter(pk=int(clinic_id)).first()
            if clinic is not None:
                return clinic

        default_id = getattr(settings, "DEFAULT_CLINIC_ID", None)
        if default_id:
            return Clinic.objects.filter(pk=default_id).first()
        return None

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _record_fields(event: BillingEvent, source: str) -> dict[str, Any]:
        return {
            "event_type": event.event_type,
            "kind": event.kind,
            "occurred_at": event.occurred_at,
            "amount_cents": event.amount_cents,
            "currency": event.currency or "",
            "source_object_id": event.source_object_id,
            "payment_reference": event.payment_reference,
            "customer_id": event.customer_id,
            "payload": event.payload,
            "source": source,
        }

    @staticmethod
    def _duplicate(event: BillingEvent) -> DispatchOutcome:
        return DispatchOutcome(
            event_id=event.event_id,
            applied=False,
            details={"duplicate": True},
        )

    def _fail(
        self,
        record: PaymentEvent,
        event: BillingEvent,
        exc: Exception,
        log_context: dict[str, Any],
    ) -> DispatchOutcome:
        message = getattr(exc, "message", None) or str(exc)
        error_code = getattr(exc, "error_code", None) or type(exc).__name__.upper()
        self.get_logger().error(
            f"Event processing failed: {error_code}",
            extra={**log_context, "error_code": error_code},
            exc_info=not isinstance(exc, DispatchTimeoutError),
        )

        now = timezone.now()
        PaymentEvent.objects.filter(pk=record.pk).exclude(
            status=PaymentEventStatus.PROCESSED
        ).update(
            status=PaymentEventStatus.FAILED,
            error_message=message,
            updated_at=now,
        )
        entry = self._dead_letter(event, message, error_code, now)

        return DispatchOutcome(
            event_id=event.event_id,
            applied=False,
            details={
                "error": message,
                "error_code": error_code,
                "dead_letter_id": str(entry.pk),
            },
            error=message,
            error_code=error_code,
        )

    @staticmethod
    def _dead_letter(
        event: BillingEvent, message: str, error_code: str, now: datetime
    ) -> DeadLetterEntry:
        """
        Open a dead-letter entry, or record another failure on the open one.

        The partial unique constraint on open entries decides between two
        failures of the same event recorded concurrently.
        """
        with transaction.atomic():
            entry, created = insert_or_get(
                DeadLetterEntry,
                source_event_id=event.event_id,
                resolved_at=None,
                defaults={
                    "event_type": event.event_type,
                    "error_message": message,
                    "error_code": error_code,
                    "payload": event.payload,
                    "last_attempt_at": now,
                },
            )
            if created:
                return entry

            entry = DeadLetterEntry.objects.select_for_update().get(pk=entry.pk)
            entry.retry_count += 1
            entry.error_message = message
            entry.error_code = error_code
            entry.last_attempt_at = now
            if entry.retry_count >= settings.DLQ_MAX_REPLAY_ATTEMPTS:
                entry.requires_manual_review = True
            entry.save(
                update_fields=[
                    "retry_count",
                    "error_message",
                    "error_code",
                    "last_attempt_at",
                    "requires_manual_review",
                    "updated_at",
                ]
            )
            return entry
