"""
Refill queue model.

The refill workflow (scheduling, pharmacist approval, prescribing) lives
outside this service. Payment handling only moves entries from
pending_payment to payment_verified.

Status Flow:
    scheduled → pending_payment → payment_verified → approved → prescribed
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class RefillStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    PAYMENT_VERIFIED = "payment_verified", "Payment Verified"
    APPROVED = "approved", "Approved"
    PRESCRIBED = "prescribed", "Prescribed"


class RefillQueueEntry(UUIDPrimaryKeyMixin, BaseModel):
    """
    A refill waiting somewhere in the refill workflow.

    Fields:
        next_refill_date: When the refill is due; oldest is matched first
        expected_amount_cents: Minimum payment that covers the refill;
            null means any payment does
        payment_reference: Payment that verified this entry (one payment
            verifies at most one entry)
    """

    patient = models.ForeignKey(
        "patients.Patient",
        on_delete=models.CASCADE,
        related_name="refills",
    )

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="refills",
    )

    status = models.CharField(
        max_length=20,
        choices=RefillStatus.choices,
        default=RefillStatus.SCHEDULED,
        db_index=True,
    )

    next_refill_date = models.DateField()

    expected_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Minimum payment in cents; empty accepts any amount",
    )

    payment_verified = models.BooleanField(default=False)
    payment_verified_at = models.DateTimeField(null=True, blank=True)

    payment_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Canonical payment id that verified this refill",
    )

    invoice_reference = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["next_refill_date"]
        verbose_name = "Refill Queue Entry"
        verbose_name_plural = "Refill Queue Entries"
        indexes = [
            models.Index(
                fields=["patient", "clinic", "status"], name="refill_patient_status_idx"
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["payment_reference"],
                condition=Q(payment_reference__isnull=False),
                name="refill_unique_payment_reference",
            ),
        ]

    def __str__(self) -> str:
        return f"Refill({self.patient_id}, {self.next_refill_date}, {self.status})"
