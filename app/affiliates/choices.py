"""
Choice enums for affiliate models.

Commission status is advanced by conditional updates
(``filter(status=...).update(...)``), not by an FSM, so concurrent
reversals and approvals cannot both win.

Commission Flow:
    pending → approved (hold matured, not fraud-held)
    pending/approved → reversed (refund or dispute, when clawback is on)
"""

from django.db import models


class AffiliateStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    PAUSED = "paused", "Paused"
    SUSPENDED = "suspended", "Suspended"


class PlanType(models.TextChoices):
    FLAT = "flat", "Flat Amount"
    PERCENT = "percent", "Percentage"


class AppliesTo(models.TextChoices):
    FIRST_PAYMENT_ONLY = "first_payment_only", "First Payment Only"
    ALL_PAYMENTS = "all_payments", "All Payments"


class AttributedVia(models.TextChoices):
    TOUCH = "touch", "Referral Touch"
    REF_CODE = "ref_code", "Ref Code in Payment Metadata"
    MANUAL = "manual", "Manual"


class CommissionStatus(models.TextChoices):
    """
    Status of a CommissionEvent.

    Terminal states: REVERSED
    """

    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REVERSED = "reversed", "Reversed"


class LedgerLineKind(models.TextChoices):
    ACCRUAL = "accrual", "Accrual"
    REVERSAL = "reversal", "Reversal"


class FraudAlertType(models.TextChoices):
    SELF_REFERRAL = "self_referral", "Self Referral"
    DUPLICATE_IP = "duplicate_ip", "Duplicate IP"
    VELOCITY_SPIKE = "velocity_spike", "Velocity Spike"
    SUSPICIOUS_PATTERN = "suspicious_pattern", "Suspicious Pattern"
    REFUND_ABUSE = "refund_abuse", "Refund Abuse"


class FraudSeverity(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class FraudAlertStatus(models.TextChoices):
    OPEN = "open", "Open"
    RESOLVED = "resolved", "Resolved"


class IpIntelProvider(models.TextChoices):
    IPQUALITYSCORE = "ipqualityscore", "IPQualityScore"
    HEURISTIC = "heuristic", "Local Heuristic"


__all__ = [
    "AffiliateStatus",
    "PlanType",
    "AppliesTo",
    "AttributedVia",
    "CommissionStatus",
    "LedgerLineKind",
    "FraudAlertType",
    "FraudSeverity",
    "FraudAlertStatus",
    "IpIntelProvider",
]
