"""
Commission events and their append-only ledger.

A CommissionEvent is never deleted. Reversal flips its status and appends a
negative ledger line; the sum of an event's lines is its current value.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Sum

from affiliates.choices import CommissionStatus, LedgerLineKind
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class CommissionEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Commission earned by an affiliate for one referred payment.

    Uniqueness:
        (affiliate, source_event_id): a payment event attributes at most once
        (affiliate, payment_reference): two reports of one economic payment
            (checkout session and payment intent) attribute at most once

    Status Flow:
        pending → approved → reversed
        pending → reversed
    """

    affiliate = models.ForeignKey(
        "affiliates.Affiliate",
        on_delete=models.PROTECT,
        related_name="commission_events",
    )
    patient = models.ForeignKey(
        "patients.Patient",
        on_delete=models.PROTECT,
        related_name="commission_events",
    )
    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="commission_events",
    )

    source_event_id = models.CharField(
        max_length=255,
        help_text="Stripe event ID (evt_xxx) that produced this commission",
    )
    payment_reference = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Canonical payment id (payment intent, else charge, else object)",
    )
    source_object_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="ID of the Stripe object the event carried",
    )
    charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
    )

    event_amount_cents = models.PositiveBigIntegerField(
        help_text="Payment amount in cents",
    )
    commission_amount_cents = models.PositiveBigIntegerField(
        help_text="Commission amount in cents",
    )
    currency = models.CharField(max_length=3, default="usd")

    is_first_payment = models.BooleanField(default=False)
    is_recurring = models.BooleanField(default=False)

    status = models.CharField(
        max_length=20,
        choices=CommissionStatus.choices,
        default=CommissionStatus.PENDING,
        db_index=True,
    )

    risk_score = models.PositiveSmallIntegerField(default=0)
    fraud_hold = models.BooleanField(
        default=False,
        help_text="Held for manual fraud review; never auto-approved",
    )
    hold_until = models.DateTimeField(null=True, blank=True)

    occurred_at = models.DateTimeField(help_text="When the payment happened")
    approved_at = models.DateTimeField(null=True, blank=True)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversal_reason = models.CharField(max_length=20, blank=True, default="")
    reversal_event_id = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-occurred_at"]
        verbose_name = "Commission Event"
        verbose_name_plural = "Commission Events"
        constraints = [
            models.UniqueConstraint(
                fields=["affiliate", "source_event_id"],
                name="commission_unique_affiliate_event",
            ),
            models.UniqueConstraint(
                fields=["affiliate", "payment_reference"],
                name="commission_unique_affiliate_payment",
            ),
        ]
        indexes = [
            models.Index(
                fields=["affiliate", "occurred_at"],
                name="commission_affiliate_time_idx",
            ),
            models.Index(
                fields=["status", "hold_until"],
                name="commission_status_hold_idx",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"CommissionEvent({self.affiliate_id}, {self.payment_reference}, "
            f"{self.status})"
        )

    @property
    def net_amount_cents(self) -> int:
        """Sum of ledger lines; zero after a full clawback."""
        return self.ledger_lines.aggregate(total=Sum("amount_cents"))["total"] or 0


class CommissionLedgerLine(BaseModel):
    """
    Append-only record of a commission effect.

    One accrual line per event and at most one reversal line, enforced by
    the (commission_event, kind) unique constraint.
    """

    commission_event = models.ForeignKey(
        CommissionEvent,
        on_delete=models.PROTECT,
        related_name="ledger_lines",
    )

    kind = models.CharField(max_length=10, choices=LedgerLineKind.choices)

    amount_cents = models.BigIntegerField(
        help_text="Signed amount in cents; reversals are negative",
    )

    source_event_id = models.CharField(
        max_length=255,
        help_text="Stripe event ID that caused this line",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Commission Ledger Line"
        verbose_name_plural = "Commission Ledger Lines"
        constraints = [
            models.UniqueConstraint(
                fields=["commission_event", "kind"],
                name="ledger_unique_event_kind",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.kind} {self.amount_cents} ({self.commission_event_id})"
