"""
Clinic, Patient and CustomerLink models.

Patients are created by the intake workflow, outside this service. This
service only reads them and records which Stripe customer belongs to which
patient.

Usage:
    from patients.models import CustomerLink, LinkedVia

    link = CustomerLink.objects.filter(stripe_customer_id="cus_123").first()
"""

from __future__ import annotations

from django.db import models

from core.helpers import normalize_email
from core.models import BaseModel


class LinkedVia(models.TextChoices):
    """How a Stripe customer was matched to a patient."""

    DIRECT = "direct", "Stripe Customer ID"
    EMAIL_FALLBACK = "email_fallback", "Email Match"
    MANUAL = "manual", "Manual"


class Clinic(BaseModel):
    """
    Tenant scope for patients, affiliates and fraud configuration.

    Fields:
        name: Display name
        stripe_account_id: Connected account id (acct_xxx) for clinics
            billed through Stripe Connect; used to route events
        is_active: Inactive clinics keep their data but take no new patients
    """

    name = models.CharField(
        max_length=255,
        help_text="Clinic display name",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Connect account ID (acct_xxx), if any",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether the clinic is active",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Clinic"
        verbose_name_plural = "Clinics"

    def __str__(self) -> str:
        return self.name


class Patient(BaseModel):
    """
    A patient of one clinic.

    The same person registered at two clinics is two patients.

    Fields:
        clinic: Owning clinic
        email: Email as entered
        email_normalized: Lower-cased, trimmed email used for matching
        first_name, last_name: Patient name
        stripe_customer_id: Stripe customer id mirrored from intake, if known
    """

    clinic = models.ForeignKey(
        Clinic,
        on_delete=models.PROTECT,
        related_name="patients",
        help_text="Clinic this patient belongs to",
    )

    email = models.EmailField(
        blank=True,
        default="",
        help_text="Patient email as entered",
    )

    email_normalized = models.CharField(
        max_length=254,
        blank=True,
        default="",
        editable=False,
        help_text="Lower-cased, trimmed email used for matching",
    )

    first_name = models.CharField(max_length=150, blank=True, default="")
    last_name = models.CharField(max_length=150, blank=True, default="")

    stripe_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Customer ID (cus_xxx) recorded at intake",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Patient"
        verbose_name_plural = "Patients"
        indexes = [
            models.Index(
                fields=["clinic", "email_normalized"], name="patient_clinic_email_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"Patient({self.pk}, clinic={self.clinic_id})"

    def save(self, *args, **kwargs):
        self.email_normalized = normalize_email(self.email) or ""
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "email" in update_fields:
            kwargs["update_fields"] = {*update_fields, "email_normalized"}
        super().save(*args, **kwargs)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CustomerLink(BaseModel):
    """
    Durable mapping from a Stripe customer to a patient.

    At most one link exists per Stripe customer (unique constraint). Links
    are written with ``core.db.insert_or_get`` so concurrent resolutions of
    the same customer converge on one row.

    Fields:
        stripe_customer_id: Stripe Customer ID (cus_xxx), unique
        patient: Linked patient
        clinic: Clinic the link was resolved in
        linked_via: How the match was made
    """

    stripe_customer_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    patient = models.ForeignKey(
        Patient,
        on_delete=models.CASCADE,
        related_name="customer_links",
        help_text="Patient this customer belongs to",
    )

    clinic = models.ForeignKey(
        Clinic,
        on_delete=models.PROTECT,
        related_name="customer_links",
        help_text="Clinic the link was resolved in",
    )

    linked_via = models.CharField(
        max_length=20,
        choices=LinkedVia.choices,
        default=LinkedVia.DIRECT,
        help_text="How the customer was matched",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Customer Link"
        verbose_name_plural = "Customer Links"

    def __str__(self) -> str:
        return f"CustomerLink({self.stripe_customer_id} -> {self.patient_id})"
