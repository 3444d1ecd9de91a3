"""
Affiliates models package.

Models:
    CommissionPlan: Commission rates and hold/clawback policy
    Affiliate: Referral partner of a clinic
    ReferralTouch: A visit through a referral link (IP hashed)
    ReferralAttribution: The affiliate credited for a patient
    CommissionEvent: Commission for one referred payment
    CommissionLedgerLine: Append-only accrual/reversal lines
    AffiliateFraudConfig: Per-clinic fraud thresholds
    FraudAlert: Fraud signal raised while scoring
    IpIntelCacheEntry: Cached IP reputation
"""

from affiliates.models.affiliate import (
    Affiliate,
    CommissionPlan,
    ReferralAttribution,
    ReferralTouch,
)
from affiliates.models.commission import CommissionEvent, CommissionLedgerLine
from affiliates.models.fraud import AffiliateFraudConfig, FraudAlert, IpIntelCacheEntry

__all__ = [
    "CommissionPlan",
    "Affiliate",
    "ReferralTouch",
    "ReferralAttribution",
    "CommissionEvent",
    "CommissionLedgerLine",
    "AffiliateFraudConfig",
    "FraudAlert",
    "IpIntelCacheEntry",
]
