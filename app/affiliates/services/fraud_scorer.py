"""
Fraud scoring for referred payments.

Five independent checks run concurrently on the async ORM:

    self-referral   affiliate email equals patient email (critical), or
                    many touches from the paying IP (high)
    duplicate IP    converted touches from the paying IP in 30 days
    velocity        non-reversed commissions per hour and per day, and a
                    spike against the 30-day daily average
    IP reputation   Tor, datacenter, proxy/VPN and provider risk score
    refund rate     reversed share of commissions over 90 days

Each check yields at most one FraudCheck. A check that raises is logged
and contributes nothing. Severity weights add up to the risk score, capped
at 100, which drives the recommendation.

Usage:
    from affiliates.services.fraud_scorer import FraudScorer

    result = FraudScorer().score(affiliate, patient_email=email, ip=client_ip)
    if result.recommendation == Recommendation.REJECT:
        ...
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from django.utils import timezone

from affiliates.choices import CommissionStatus, FraudAlertType, FraudSeverity
from affiliates.models import (
    AffiliateFraudConfig,
    CommissionEvent,
    FraudAlert,
    ReferralTouch,
)
from affiliates.services.ip_intelligence import default_ip_intelligence
from core.helpers import hash_ip, normalize_email
from core.services import BaseService

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from affiliates.models import Affiliate
    from affiliates.services.ip_intelligence import IpIntelligenceCache


SEVERITY_WEIGHTS = {
    FraudSeverity.CRITICAL: 40,
    FraudSeverity.HIGH: 25,
    FraudSeverity.MEDIUM: 15,
    FraudSeverity.LOW: 5,
}

MAX_RISK_SCORE = 100
REVIEW_SCORE = 25

SELF_REFERRAL_TOUCH_LIMIT = 10
TOUCH_WINDOW = timedelta(days=30)
VELOCITY_BASELINE_DAYS = 30
REFUND_WINDOW = timedelta(days=90)
HIGH_IP_RISK = 90


class Recommendation(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"


@dataclass(frozen=True)
class FraudCheck:
    """One fraud signal, before it is stored as a FraudAlert."""

    alert_type: str
    severity: str
    description: str
    evidence: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FraudCheckResult:
    """
    Aggregated outcome of the fraud checks.

    Attributes:
        risk_score: 0-100
        alerts: Signals in check order
        recommendation: Recommendation value
    """

    risk_score: int
    alerts: tuple[FraudCheck, ...]
    recommendation: Recommendation

    @property
    def passed(self) -> bool:
        return self.recommendation == Recommendation.APPROVE

    @classmethod
    def clean(cls) -> FraudCheckResult:
        return cls(risk_score=0, alerts=(), recommendation=Recommendation.APPROVE)

    @classmethod
    def from_alerts(cls, alerts: list[FraudCheck]) -> FraudCheckResult:
        """Weight alerts by severity and derive the recommendation."""
        score = min(
            MAX_RISK_SCORE, sum(SEVERITY_WEIGHTS[a.severity] for a in alerts)
        )
        severities = {a.severity for a in alerts}

        if FraudSeverity.CRITICAL in severities:
            recommendation = Recommendation.REJECT
        elif score >= REVIEW_SCORE:
            recommendation = Recommendation.REVIEW
        else:
            recommendation = Recommendation.APPROVE

        return cls(
            risk_score=score, alerts=tuple(alerts), recommendation=recommendation
        )


class FraudScorer(BaseService):
    """
    Score a referred payment for affiliate fraud.

    Args:
        ip_intelligence: IP reputation source (default: settings-configured
            IpIntelligenceCache)
    """

    def __init__(self, ip_intelligence: IpIntelligenceCache | None = None):
        self.ip_intelligence = ip_intelligence or default_ip_intelligence()

    def score(
        self,
        affiliate: Affiliate,
        patient_email: str | None = None,
        ip: str | None = None,
        amount_cents: int | None = None,
    ) -> FraudCheckResult:
        """
        Run every enabled check for the affiliate and aggregate the result.

        Args:
            affiliate: Affiliate credited with the payment
            patient_email: Email of the paying patient
            ip: Raw client IP from the payment metadata, if any
            amount_cents: Payment amount, for log context

        Returns:
            FraudCheckResult; a clean approve when fraud checks are disabled
            for the affiliate's clinic
        """
        config = AffiliateFraudConfig.for_clinic(affiliate.clinic_id)
        if not config.enabled:
            return FraudCheckResult.clean()

        alerts = async_to_sync(self._run_checks)(affiliate, config, patient_email, ip)
        result = FraudCheckResult.from_alerts(alerts)

        if result.alerts:
            self.get_logger().info(
                f"Fraud checks raised {len(result.alerts)} alert(s)",
                extra={
                    "affiliate_id": affiliate.pk,
                    "risk_score": result.risk_score,
                    "recommendation": result.recommendation.value,
                    "amount_cents": amount_cents,
                },
            )
        return result

    def record_alerts(
        self,
        result: FraudCheckResult,
        affiliate: Affiliate,
        commission_event: CommissionEvent | None = None,
        affected_amount_cents: int | None = None,
    ) -> list[FraudAlert]:
        """Persist the result's signals as FraudAlert rows."""
        if not result.alerts:
            return []
        return FraudAlert.objects.bulk_create(
            [
                FraudAlert(
                    clinic_id=affiliate.clinic_id,
                    affiliate=affiliate,
                    commission_event=commission_event,
                    alert_type=alert.alert_type,
                    severity=alert.severity,
                    description=alert.description,
                    evidence=alert.evidence,
                    risk_score=result.risk_score,
                    affected_amount_cents=affected_amount_cents,
                )
                for alert in result.alerts
            ]
        )

    # =========================================================================
    # Checks
    # =========================================================================

    async def _run_checks(
        self,
        affiliate: Affiliate,
        config: AffiliateFraudConfig,
        patient_email: str | None,
        ip: str | None,
    ) -> list[FraudCheck]:
        now = timezone.now()
        ip_hash = hash_ip(ip) if ip else None

        checks = {}
        if config.enable_self_referral_check:
            checks["self_referral"] = self._check_self_referral(
                affiliate, patient_email, ip_hash, now
            )
        if ip_hash:
            checks["duplicate_ip"] = self._check_duplicate_ip(
                affiliate, config, ip_hash, now
            )
        checks["velocity"] = self._check_velocity(affiliate, config, now)
        if ip:
            checks["ip_risk"] = self._check_ip_risk(config, ip)
        checks["refund_rate"] = self._check_refund_rate(affiliate, config, now)

        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        alerts = []
        for name, outcome in zip(checks, results):
            if isinstance(outcome, Exception):
                self.get_logger().warning(
                    f"Fraud check {name} failed: {outcome}",
                    extra={"check": name, "affiliate_id": affiliate.pk},
                    exc_info=outcome,
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if outcome is not None:
                alerts.append(outcome)
        return alerts

    async def _check_self_referral(
        self,
        affiliate: Affiliate,
        patient_email: str | None,
        ip_hash: str | None,
        now: datetime,
    ) -> FraudCheck | None:
        affiliate_email = normalize_email(affiliate.email)
        if affiliate_email and affiliate_email == normalize_email(patient_email):
            return FraudCheck(
                alert_type=FraudAlertType.SELF_REFERRAL,
                severity=FraudSeverity.CRITICAL,
                description="Affiliate email matches patient email",
                evidence={"affiliate_id": affiliate.pk, "email_match": True},
            )

        if ip_hash:
            touches = await ReferralTouch.objects.filter(
                affiliate_id=affiliate.pk,
                ip_hash=ip_hash,
                touched_at__gte=now - TOUCH_WINDOW,
            ).acount()
            if touches > SELF_REFERRAL_TOUCH_LIMIT:
                return FraudCheck(
                    alert_type=FraudAlertType.SELF_REFERRAL,
                    severity=FraudSeverity.HIGH,
                    description="High number of touches from the paying IP",
                    evidence={"ip_hash": ip_hash, "touch_count": touches},
                )
        return None

    async def _check_duplicate_ip(
        self,
        affiliate: Affiliate,
        config: AffiliateFraudConfig,
        ip_hash: str,
        now: datetime,
    ) -> FraudCheck | None:
        conversions = await ReferralTouch.objects.filter(
            clinic_id=affiliate.clinic_id,
            affiliate_id=affiliate.pk,
            ip_hash=ip_hash,
            converted_patient__isnull=False,
            touched_at__gte=now - TOUCH_WINDOW,
        ).acount()

        limit = config.max_conversions_per_ip
        if conversions < limit:
            return None
        return FraudCheck(
            alert_type=FraudAlertType.DUPLICATE_IP,
            severity=(
                FraudSeverity.HIGH if conversions > limit * 2 else FraudSeverity.MEDIUM
            ),
            description=f"{conversions} conversions from the same IP in 30 days",
            evidence={"ip_hash": ip_hash, "conversions": conversions, "threshold": limit},
        )

    async def _check_velocity(
        self,
        affiliate: Affiliate,
        config: AffiliateFraudConfig,
        now: datetime,
    ) -> FraudCheck | None:
        live = CommissionEvent.objects.filter(
            clinic_id=affiliate.clinic_id, affiliate_id=affiliate.pk
        ).exclude(status=CommissionStatus.REVERSED)

        hourly, daily, monthly = await asyncio.gather(
            live.filter(occurred_at__gte=now - timedelta(hours=1)).acount(),
            live.filter(occurred_at__gte=now - timedelta(days=1)).acount(),
            live.filter(
                occurred_at__gte=now - timedelta(days=VELOCITY_BASELINE_DAYS)
            ).acount(),
        )
        daily_average = monthly / VELOCITY_BASELINE_DAYS

        if hourly > config.max_conversions_per_hour:
            return FraudCheck(
                alert_type=FraudAlertType.VELOCITY_SPIKE,
                severity=FraudSeverity.HIGH,
                description=f"{hourly} conversions in the last hour",
                evidence={
                    "window": "hourly",
                    "count": hourly,
                    "threshold": config.max_conversions_per_hour,
                },
            )
        if daily > config.max_conversions_per_day:
            return FraudCheck(
                alert_type=FraudAlertType.VELOCITY_SPIKE,
                severity=FraudSeverity.HIGH,
                description=f"{daily} conversions in the last 24 hours",
                evidence={
                    "window": "daily",
                    "count": daily,
                    "threshold": config.max_conversions_per_day,
                },
            )
        if daily_average > 1 and daily > daily_average * config.velocity_spike_multiplier:
            return FraudCheck(
                alert_type=FraudAlertType.VELOCITY_SPIKE,
                severity=FraudSeverity.MEDIUM,
                description=(
                    f"{daily} conversions today against a daily average of "
                    f"{daily_average:.1f}"
                ),
                evidence={
                    "window": "spike",
                    "count": daily,
                    "daily_average": round(daily_average, 2),
                    "multiplier": config.velocity_spike_multiplier,
                },
            )
        return None

    async def _check_ip_risk(
        self, config: AffiliateFraudConfig, ip: str
    ) -> FraudCheck | None:
        reputation = await self.ip_intelligence.alookup(ip)
        evidence = reputation.as_evidence()

        if reputation.is_tor:
            return FraudCheck(
                alert_type=FraudAlertType.SUSPICIOUS_PATTERN,
                severity=FraudSeverity.CRITICAL,
                description="Traffic from a Tor exit node",
                evidence=evidence,
            )
        if config.block_datacenter and reputation.is_datacenter:
            return FraudCheck(
                alert_type=FraudAlertType.SUSPICIOUS_PATTERN,
                severity=FraudSeverity.HIGH,
                description="Traffic from a datacenter IP",
                evidence=evidence,
            )
        if config.block_proxy_vpn and (reputation.is_proxy or reputation.is_vpn):
            return FraudCheck(
                alert_type=FraudAlertType.SUSPICIOUS_PATTERN,
                severity=FraudSeverity.MEDIUM,
                description="Traffic from a proxy or VPN",
                evidence=evidence,
            )
        if reputation.risk_score >= config.min_ip_risk_score:
            return FraudCheck(
                alert_type=FraudAlertType.SUSPICIOUS_PATTERN,
                severity=(
                    FraudSeverity.HIGH
                    if reputation.risk_score >= HIGH_IP_RISK
                    else FraudSeverity.MEDIUM
                ),
                description=f"High IP risk score: {reputation.risk_score}",
                evidence=evidence,
            )
        return None

    async def _check_refund_rate(
        self,
        affiliate: Affiliate,
        config: AffiliateFraudConfig,
        now: datetime,
    ) -> FraudCheck | None:
        recent = CommissionEvent.objects.filter(
            clinic_id=affiliate.clinic_id,
            affiliate_id=affiliate.pk,
            occurred_at__gte=now - REFUND_WINDOW,
        )
        total, reversed_count = await asyncio.gather(
            recent.acount(),
            recent.filter(status=CommissionStatus.REVERSED).acount(),
        )

        if total == 0 or total < config.min_refunds_for_alert:
            return None

        refund_rate = reversed_count / total * 100
        limit = config.max_refund_rate_pct
        if refund_rate <= limit:
            return None
        return FraudCheck(
            alert_type=FraudAlertType.REFUND_ABUSE,
            severity=FraudSeverity.HIGH if refund_rate > limit * 2 else FraudSeverity.MEDIUM,
            description=f"Refund rate {refund_rate:.1f}% exceeds {limit}%",
            evidence={
                "total_events": total,
                "reversed_events": reversed_count,
                "refund_rate": round(refund_rate, 1),
                "threshold": limit,
            },
        )
