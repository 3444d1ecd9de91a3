"""
Subscription state synchronization.

Projects customer.subscription.* events onto the local Subscription table.

Status mapping (Stripe → local):
    active, trialing                         → active
    past_due                                 → past_due
    paused                                   → paused
    canceled, unpaid, incomplete_expired     → canceled
    any status on a ``deleted`` event        → canceled
    anything else (incomplete, ...)          → unchanged

Interval classification:
    year                 → annual
    month, count 3       → quarterly
    month, count 6       → semiannual
    month, count 12      → annual
    everything else      → monthly (day and week cadences included)

Status changes are django-fsm transitions. A change the state machine
does not allow, such as a late ``active`` update after a cancellation,
leaves the status as it is and is logged.

Usage:
    from billing.services import SubscriptionSynchronizer

    subscription = SubscriptionSynchronizer().sync(event, clinic_hint=clinic)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction
from django_fsm import can_proceed

from billing.events import SubscriptionAction
from billing.models import Subscription
from billing.state_machines import BillingInterval, SubscriptionStatus
from core.db import insert_or_get
from core.services import BaseService
from patients.services import PatientResolver

if TYPE_CHECKING:
    from typing import Any

    from billing.events import SubscriptionChanged
    from patients.models import Clinic


STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAUSED,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

# Transition method on Subscription for each target status
TRANSITIONS = {
    SubscriptionStatus.ACTIVE: "activate",
    SubscriptionStatus.PAST_DUE: "mark_past_due",
    SubscriptionStatus.PAUSED: "pause",
    SubscriptionStatus.CANCELED: "cancel",
}

MONTH_COUNT_INTERVALS = {
    3: BillingInterval.QUARTERLY,
    6: BillingInterval.SEMIANNUAL,
    12: BillingInterval.ANNUAL,
}


def map_status(stripe_status: str, action: SubscriptionAction) -> str | None:
    """Local status for a Stripe status, or None to keep the current one."""
    if action == SubscriptionAction.DELETED:
        return SubscriptionStatus.CANCELED
    return STRIPE_STATUS_MAP.get(stripe_status)


def classify_interval(interval: str | None, interval_count: int | None) -> str:
    """
    Classify a Stripe recurring interval.

    Monthly is the catch-all: a 28-day cadence, a weekly plan and a
    two-month plan all classify as monthly.

    Example:
        classify_interval("month", 3)  # BillingInterval.QUARTERLY
    """
    count = interval_count or 1
    if interval == "year":
        return BillingInterval.ANNUAL
    if interval == "month":
        return MONTH_COUNT_INTERVALS.get(count, BillingInterval.MONTHLY)
    return BillingInterval.MONTHLY


class SubscriptionSynchronizer(BaseService):
    """
    Upsert Subscription rows from subscription events.

    Args:
        resolver: Patient resolver (default: PatientResolver())
    """

    def __init__(self, resolver: PatientResolver | None = None):
        self.resolver = resolver or PatientResolver()

    def sync(
        self, event: SubscriptionChanged, clinic_hint: Clinic | None = None
    ) -> Subscription | None:
        """
        Apply a subscription event.

        Args:
            event: Parsed subscription event
            clinic_hint: Clinic the event belongs to, if known

        Returns:
            The upserted Subscription, or None if the customer does not
            resolve to a patient
        """
        logger = self.get_logger()

        resolved = self.resolver.resolve(
            event.customer_id, clinic_hint=clinic_hint, email_hint=event.email
        )
        if resolved is None:
            logger.info(
                "Subscription skipped: unresolved customer",
                extra={
                    "stripe_event_id": event.event_id,
                    "subscription_id": event.subscription_id,
                    "customer_id": event.customer_id,
                },
            )
            return None

        target = map_status(event.status, event.action)
        fields = self._period_fields(event)

        with transaction.atomic():
            initial_status = target or SubscriptionStatus.ACTIVE
            subscription, created = insert_or_get(
                Subscription,
                stripe_subscription_id=event.subscription_id,
                defaults={
                    "patient": resolved.patient,
                    "clinic": resolved.clinic,
                    "stripe_customer_id": event.customer_id or "",
                    "status": initial_status,
                    "canceled_at": self._canceled_at(event, initial_status),
                    "next_billing_date": (
                        event.current_period_end
                        if initial_status == SubscriptionStatus.ACTIVE
                        else None
                    ),
                    **fields,
                },
            )
            if created:
                logger.info(
                    "Subscription created",
                    extra={
                        "subscription_id": event.subscription_id,
                        "status": initial_status,
                        "patient_id": resolved.patient.pk,
                    },
                )
                return subscription

            subscription = Subscription.objects.select_for_update().get(
                pk=subscription.pk
            )
            self._transition(subscription, target, event)
            for name, value in fields.items():
                setattr(subscription, name, value)
            if event.canceled_at is not None:
                subscription.canceled_at = event.canceled_at
            subscription.next_billing_date = (
                subscription.current_period_end if subscription.is_active else None
            )
            subscription.save()

        return subscription

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _period_fields(event: SubscriptionChanged) -> dict[str, Any]:
        return {
            "amount_cents": event.amount_cents,
            "currency": event.currency,
            "interval": event.interval or "",
            "interval_count": event.interval_count or 1,
            "billing_interval": classify_interval(event.interval, event.interval_count),
            "current_period_start": event.current_period_start,
            "current_period_end": event.current_period_end,
            "cancel_at_period_end": event.cancel_at_period_end,
        }

    @staticmethod
    def _canceled_at(event: SubscriptionChanged, status: str):
        if status != SubscriptionStatus.CANCELED:
            return event.canceled_at
        return event.canceled_at or event.occurred_at

    def _transition(
        self, subscription: Subscription, target: str | None, event: SubscriptionChanged
    ) -> None:
        if target is None or target == subscription.status:
            return

        method = getattr(subscription, TRANSITIONS[target])
        if not can_proceed(method):
            self.get_logger().warning(
                f"Ignoring subscription transition {subscription.status} -> {target}",
                extra={
                    "stripe_event_id": event.event_id,
                    "subscription_id": subscription.stripe_subscription_id,
                    "current_status": subscription.status,
                    "requested_status": target,
                },
            )
            return

        if target == SubscriptionStatus.CANCELED:
            method(canceled_at=event.canceled_at or event.occurred_at)
        else:
            method()
