"""
Subscription model: local projection of a Stripe subscription.

Rows are upserted by ``billing.services.subscription_sync`` from
customer.subscription.* events. Status changes go through django-fsm
transitions, so an out-of-order or replayed event cannot move a canceled
subscription back to active.

Usage:
    from billing.models import Subscription

    subscription = Subscription.objects.get(stripe_subscription_id="sub_123")
    subscription.mark_past_due()
    subscription.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines import BillingInterval, SubscriptionStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

LIVE_STATUSES = [
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.PAUSED,
]


class Subscription(UUIDPrimaryKeyMixin, BaseModel):
    """
    A patient's recurring subscription.

    State Flow:
        ACTIVE ⇄ PAST_DUE ⇄ PAUSED, ACTIVE ⇄ PAUSED
        ACTIVE/PAST_DUE/PAUSED -> CANCELED (terminal)
        EXPIRED is terminal and only set outside this service

    Fields:
        stripe_subscription_id: Stripe Subscription ID (sub_xxx)
        interval, interval_count: Stripe's raw recurring interval
        billing_interval: Classified cadence (monthly, quarterly, ...)
        next_billing_date: Current period end while active, else empty
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    patient = models.ForeignKey(
        "patients.Patient",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.ACTIVE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the subscription (managed by FSM)",
    )

    # ==========================================================================
    # Amount & Cadence
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(default=0)

    currency = models.CharField(max_length=3, default="usd")

    interval = models.CharField(
        max_length=10,
        blank=True,
        default="",
        help_text="Stripe recurring interval: day, week, month or year",
    )

    interval_count = models.PositiveSmallIntegerField(default=1)

    billing_interval = models.CharField(
        max_length=12,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTHLY,
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    next_billing_date = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    cancel_at_period_end = models.BooleanField(default=False)
    canceled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["patient", "status"], name="subscription_patient_idx"),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Subscription({self.stripe_subscription_id}, {self.status}, {amount_display}/{self.billing_interval})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[SubscriptionStatus.PAST_DUE, SubscriptionStatus.PAUSED],
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """Payment recovered or subscription resumed."""

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED],
        target=SubscriptionStatus.PAST_DUE,
    )
    def mark_past_due(self):
        """Renewal payment failed; Stripe is retrying."""

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE],
        target=SubscriptionStatus.PAUSED,
    )
    def pause(self):
        """Collection paused."""

    @transition(field=status, source=LIVE_STATUSES, target=SubscriptionStatus.CANCELED)
    def cancel(self, canceled_at=None):
        """
        Cancel the subscription.

        Transition: ACTIVE/PAST_DUE/PAUSED -> CANCELED
        """
        self.canceled_at = canceled_at or self.canceled_at or timezone.now()

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED
