"""
State and choice enums for billing models.

These are Django TextChoices for database storage and admin integration.
SubscriptionStatus is driven by django-fsm transitions on Subscription.

State Machines Overview:

PaymentEvent processing:
    pending → processing → processed
    pending → processing → failed → processing (replay / reconciliation)

Subscription:
    active ⇄ past_due ⇄ paused (and active ⇄ paused)
    active/past_due/paused → canceled (terminal)
"""

from django.db import models


class PaymentEventStatus(models.TextChoices):
    """
    Processing status for PaymentEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (replayed from the dead-letter queue)

    PROCESSED is terminal: a processed event is never applied again.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class PaymentEventKind(models.TextChoices):
    """Tagged variant of an inbound event, as stored on PaymentEvent."""

    INTENT_SUCCEEDED = "intent_succeeded", "Payment Intent Succeeded"
    CHARGE_SUCCEEDED = "charge_succeeded", "Charge Succeeded"
    CHECKOUT_COMPLETED = "checkout_completed", "Checkout Completed"
    INVOICE_PAID = "invoice_paid", "Invoice Paid"
    REFUND = "refund", "Refund"
    DISPUTE = "dispute", "Dispute"
    SUBSCRIPTION = "subscription", "Subscription Change"
    IGNORED = "ignored", "Ignored"


class EventSource(models.TextChoices):
    """How an event reached the dispatcher."""

    WEBHOOK = "webhook", "Webhook"
    RECONCILIATION = "reconciliation", "Reconciliation Sweep"
    REPLAY = "replay", "Dead-Letter Replay"


class SubscriptionStatus(models.TextChoices):
    """
    Local projection of a Stripe subscription's status.

    Terminal states: CANCELED, EXPIRED

    Stripe status mapping:
        active, trialing → ACTIVE
        past_due → PAST_DUE
        paused → PAUSED
        canceled, unpaid, incomplete_expired → CANCELED
    """

    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    PAUSED = "paused", "Paused"
    CANCELED = "canceled", "Canceled"
    EXPIRED = "expired", "Expired"


class BillingInterval(models.TextChoices):
    """Classified billing cadence of a subscription."""

    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"
    SEMIANNUAL = "semiannual", "Semiannual"
    ANNUAL = "annual", "Annual"


class ReconciliationRunStatus(models.TextChoices):
    """
    Status of a reconciliation sweep.

    State Flow:
        RUNNING → COMPLETED
        RUNNING → FAILED (event listing failed)
    SKIPPED runs are recorded by callers that lost the lock and are never
    persisted.
    """

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class ReconciliationTrigger(models.TextChoices):
    """What started a reconciliation sweep."""

    SCHEDULE = "schedule", "Celery Beat"
    CRON = "cron", "External Scheduler"
    MANUAL = "manual", "Manual"


# Kinds that record a successful payment
PAYMENT_KINDS = (
    PaymentEventKind.INTENT_SUCCEEDED,
    PaymentEventKind.CHARGE_SUCCEEDED,
    PaymentEventKind.CHECKOUT_COMPLETED,
    PaymentEventKind.INVOICE_PAID,
)


__all__ = [
    "PAYMENT_KINDS",
    "PaymentEventStatus",
    "PaymentEventKind",
    "EventSource",
    "SubscriptionStatus",
    "BillingInterval",
    "ReconciliationRunStatus",
    "ReconciliationTrigger",
]
