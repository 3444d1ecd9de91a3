"""
Affiliate, commission plan and referral models.

Referral touches and attributions are written by the referral landing flow,
which lives outside this service. The commission engine reads them, and may
create an attribution when a payment carries a ``ref_code``.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from affiliates.choices import AffiliateStatus, AppliesTo, AttributedVia, PlanType
from core.models import BaseModel


class CommissionPlan(BaseModel):
    """
    How much an affiliate earns per referred payment.

    Rates:
        flat: ``flat_amount_cents`` per qualifying payment
        percent: ``percent_bps`` basis points (1000 = 10%) of the payment

    Overrides (when set) replace the base rate for the first payment
    (``initial_*``) or for recurring subscription payments (``recurring_*``).

    Fields:
        hold_days: Days a commission stays pending before it can be approved
        clawback_enabled: Whether refunds and disputes reverse commissions
    """

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="commission_plans",
    )

    name = models.CharField(max_length=255)

    plan_type = models.CharField(
        max_length=10,
        choices=PlanType.choices,
        default=PlanType.PERCENT,
    )

    flat_amount_cents = models.PositiveIntegerField(
        default=0,
        help_text="Flat commission in cents",
    )
    percent_bps = models.PositiveIntegerField(
        default=0,
        help_text="Percentage commission in basis points (1000 = 10%)",
    )

    initial_flat_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    initial_percent_bps = models.PositiveIntegerField(null=True, blank=True)
    recurring_flat_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    recurring_percent_bps = models.PositiveIntegerField(null=True, blank=True)

    applies_to = models.CharField(
        max_length=20,
        choices=AppliesTo.choices,
        default=AppliesTo.FIRST_PAYMENT_ONLY,
    )

    recurring_enabled = models.BooleanField(
        default=False,
        help_text="Pay commission on recurring subscription payments",
    )

    hold_days = models.PositiveIntegerField(
        default=30,
        help_text="Days before a pending commission matures",
    )

    clawback_enabled = models.BooleanField(
        default=True,
        help_text="Reverse commissions when the payment is refunded or disputed",
    )

    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Commission Plan"
        verbose_name_plural = "Commission Plans"

    def __str__(self) -> str:
        return self.name

    def rate_for(self, *, is_first: bool, is_recurring: bool) -> int:
        """
        Effective rate for a payment: cents for flat plans, bps for percent.

        Overrides take precedence over the base rate.
        """
        if self.plan_type == PlanType.FLAT:
            base = self.flat_amount_cents
            initial = self.initial_flat_amount_cents
            recurring = self.recurring_flat_amount_cents
        else:
            base = self.percent_bps
            initial = self.initial_percent_bps
            recurring = self.recurring_percent_bps

        if is_first and initial is not None:
            return initial
        if is_recurring and recurring is not None:
            return recurring
        return base


class Affiliate(BaseModel):
    """
    A referral partner of one clinic.

    Fields:
        email: Email of the affiliate's own account (self-referral check)
        ref_code: Public referral code, unique across clinics
        status: Only active affiliates earn commission
        commission_plan: Plan applied to referred payments
    """

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="affiliates",
    )

    display_name = models.CharField(max_length=255)

    email = models.EmailField(blank=True, default="")

    ref_code = models.CharField(
        max_length=64,
        unique=True,
        help_text="Referral code carried in links and payment metadata",
    )

    status = models.CharField(
        max_length=20,
        choices=AffiliateStatus.choices,
        default=AffiliateStatus.ACTIVE,
        db_index=True,
    )

    commission_plan = models.ForeignKey(
        CommissionPlan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="affiliates",
    )

    class Meta:
        ordering = ["display_name"]
        verbose_name = "Affiliate"
        verbose_name_plural = "Affiliates"

    def __str__(self) -> str:
        return f"{self.display_name} ({self.ref_code})"

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.ACTIVE


class ReferralTouch(BaseModel):
    """
    One visit through an affiliate's referral link.

    Only the salted hash of the visitor IP is stored.
    """

    affiliate = models.ForeignKey(
        Affiliate,
        on_delete=models.CASCADE,
        related_name="touches",
    )

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="referral_touches",
    )

    ip_hash = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Salted SHA-256 of the visitor IP",
    )

    converted_patient = models.ForeignKey(
        "patients.Patient",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="referral_touches",
    )

    touched_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-touched_at"]
        verbose_name = "Referral Touch"
        verbose_name_plural = "Referral Touches"
        indexes = [
            models.Index(
                fields=["affiliate", "ip_hash", "touched_at"],
                name="touch_affiliate_ip_idx",
            ),
        ]


class ReferralAttribution(BaseModel):
    """The affiliate credited with referring a patient. One per patient."""

    patient = models.OneToOneField(
        "patients.Patient",
        on_delete=models.CASCADE,
        related_name="referral_attribution",
    )

    affiliate = models.ForeignKey(
        Affiliate,
        on_delete=models.PROTECT,
        related_name="attributions",
    )

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="referral_attributions",
    )

    attributed_via = models.CharField(
        max_length=20,
        choices=AttributedVia.choices,
        default=AttributedVia.TOUCH,
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Referral Attribution"
        verbose_name_plural = "Referral Attributions"

    def __str__(self) -> str:
        return f"Attribution(patient={self.patient_id} -> {self.affiliate_id})"
