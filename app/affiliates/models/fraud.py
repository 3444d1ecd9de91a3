"""
Fraud configuration, alerts and the IP reputation cache.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from affiliates.choices import (
    FraudAlertStatus,
    FraudAlertType,
    FraudSeverity,
    IpIntelProvider,
)
from core.models import BaseModel


class AffiliateFraudConfig(BaseModel):
    """
    Per-clinic fraud thresholds.

    A clinic without a row uses the field defaults, see ``for_clinic``.
    """

    clinic = models.OneToOneField(
        "patients.Clinic",
        on_delete=models.CASCADE,
        related_name="fraud_config",
    )

    enabled = models.BooleanField(default=True)

    max_conversions_per_day = models.PositiveIntegerField(default=50)
    max_conversions_per_hour = models.PositiveIntegerField(default=10)
    velocity_spike_multiplier = models.FloatField(default=3.0)

    max_conversions_per_ip = models.PositiveIntegerField(default=3)

    min_ip_risk_score = models.PositiveSmallIntegerField(
        default=75,
        help_text="Provider risk score at or above which an alert is raised",
    )
    block_proxy_vpn = models.BooleanField(default=False)
    block_datacenter = models.BooleanField(default=True)

    max_refund_rate_pct = models.PositiveSmallIntegerField(default=20)
    min_refunds_for_alert = models.PositiveIntegerField(
        default=5,
        help_text="Minimum commissions in the window before the refund rate is judged",
    )

    enable_self_referral_check = models.BooleanField(default=True)
    auto_suspend_on_critical = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Affiliate Fraud Config"
        verbose_name_plural = "Affiliate Fraud Configs"

    def __str__(self) -> str:
        return f"FraudConfig(clinic={self.clinic_id})"

    @classmethod
    def for_clinic(cls, clinic_id) -> AffiliateFraudConfig:
        """Stored config for the clinic, or an unsaved one with defaults."""
        config = cls.objects.filter(clinic_id=clinic_id).first()
        if config is None:
            config = cls(clinic_id=clinic_id)
        return config


class FraudAlert(BaseModel):
    """
    A fraud signal raised while scoring a commission.

    Alerts are resolved by manual review.
    """

    clinic = models.ForeignKey(
        "patients.Clinic",
        on_delete=models.PROTECT,
        related_name="fraud_alerts",
    )
    affiliate = models.ForeignKey(
        "affiliates.Affiliate",
        on_delete=models.CASCADE,
        related_name="fraud_alerts",
    )
    commission_event = models.ForeignKey(
        "affiliates.CommissionEvent",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fraud_alerts",
    )

    alert_type = models.CharField(max_length=30, choices=FraudAlertType.choices)
    severity = models.CharField(max_length=10, choices=FraudSeverity.choices)
    description = models.TextField()
    evidence = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=10,
        choices=FraudAlertStatus.choices,
        default=FraudAlertStatus.OPEN,
        db_index=True,
    )
    risk_score = models.PositiveSmallIntegerField(default=0)
    affected_amount_cents = models.PositiveBigIntegerField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Fraud Alert"
        verbose_name_plural = "Fraud Alerts"
        indexes = [
            models.Index(
                fields=["affiliate", "status"], name="fraud_alert_affiliate_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"FraudAlert({self.alert_type}, {self.severity})"


class IpIntelCacheEntry(BaseModel):
    """
    Cached IP reputation, keyed by the salted IP hash.

    Rows past ``expires_at`` are deleted by the next lookup of the same hash
    and by the periodic purge task.
    """

    ip_hash = models.CharField(max_length=64, unique=True)

    is_proxy = models.BooleanField(default=False)
    is_vpn = models.BooleanField(default=False)
    is_tor = models.BooleanField(default=False)
    is_datacenter = models.BooleanField(default=False)
    is_bot = models.BooleanField(default=False)

    risk_score = models.PositiveSmallIntegerField(default=0)
    fraud_score = models.PositiveSmallIntegerField(default=0)

    country_code = models.CharField(max_length=2, blank=True, default="")
    isp = models.CharField(max_length=255, blank=True, default="")

    provider = models.CharField(
        max_length=20,
        choices=IpIntelProvider.choices,
        default=IpIntelProvider.HEURISTIC,
    )

    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        verbose_name = "IP Intel Cache Entry"
        verbose_name_plural = "IP Intel Cache Entries"

    def __str__(self) -> str:
        return f"IpIntel({self.ip_hash[:12]}, {self.provider})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()
