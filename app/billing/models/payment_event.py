"""
PaymentEvent model: one row per Stripe event, keyed by the Stripe event id.

The row is inserted with ``core.db.insert_or_get`` before any effect is
applied, so the unique stripe_event_id is what makes dispatch idempotent:
a redelivered, replayed or reconciled event finds the same row and, once
it is processed, nothing runs again.

Usage:
    from billing.models import PaymentEvent
    from billing.state_machines import PaymentEventStatus

    PaymentEvent.objects.filter(
        payment_reference="pi_123", status=PaymentEventStatus.PROCESSED
    )
"""

from __future__ import annotations

from django.db import models

from billing.state_machines import EventSource, PaymentEventKind, PaymentEventStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class PaymentEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Durable record of an inbound Stripe event and its processing.

    Processing Flow:
        1. insert_or_get by stripe_event_id (status PENDING)
        2. conditional update to PROCESSING, attempts + 1
        3. effects applied inside one transaction that also sets PROCESSED
        4. on failure: status FAILED and a DeadLetterEntry

    Fields:
        stripe_event_id: Stripe Event ID (evt_xxx), the idempotency key
        kind: Tagged variant the event parsed into
        payment_reference: Canonical id of the underlying payment (intent
            id, else charge id, else the reporting object id)
        patient, clinic: Set once the customer is resolved
        payload: Raw Stripe payload, kept for audit and replay
        outcome: Summary of the effects applied (or the skip reason)
        source: How the event first reached the dispatcher

    The identifying and payload fields are written once at insert time.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
    )

    kind = models.CharField(
        max_length=30,
        choices=PaymentEventKind.choices,
        default=PaymentEventKind.IGNORED,
        db_index=True,
    )

    occurred_at = models.DateTimeField(
        help_text="When the event happened at Stripe",
    )

    # ==========================================================================
    # Payment Details
    # ==========================================================================

    amount_cents = models.BigIntegerField(null=True, blank=True)

    currency = models.CharField(max_length=3, blank=True, default="")

    source_object_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Charge, intent, session, invoice or subscription id",
    )

    payment_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Canonical id of the underlying economic payment",
    )

    customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    patient = models.ForeignKey(
        "patients.Patient",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_events",
    )

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_events",
    )

    payload = models.JSONField(
        default=dict,
        help_text="Full event payload from Stripe (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=PaymentEventStatus.choices,
        default=PaymentEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(blank=True, default="")

    attempts = models.PositiveIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    outcome = models.JSONField(
        default=dict,
        blank=True,
        help_text="Effects applied, or the reason the event was skipped",
    )

    source = models.CharField(
        max_length=20,
        choices=EventSource.choices,
        default=EventSource.WEBHOOK,
    )

    class Meta:
        ordering = ["-occurred_at"]
        verbose_name = "Payment Event"
        verbose_name_plural = "Payment Events"
        indexes = [
            models.Index(
                fields=["payment_reference", "status"], name="payment_event_ref_idx"
            ),
            models.Index(fields=["patient", "kind", "status"], name="payment_event_patient_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentEvent({self.stripe_event_id}, {self.event_type}, {self.status})"

    @property
    def is_processed(self) -> bool:
        return self.status == PaymentEventStatus.PROCESSED

    @property
    def was_skipped(self) -> bool:
        """True if processing completed without applying effects."""
        return "skipped" in (self.outcome or {})
