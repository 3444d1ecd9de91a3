"""
Commission attribution, reversal and maturation.

attribute():
    referring affiliate → eligibility → amount → fraud gate → insert

    The fraud recommendation gates the insert:
        approve → CommissionEvent approved
        review  → CommissionEvent pending with fraud_hold
        reject  → no CommissionEvent, alerts only (and an optional
                  affiliate suspension)

reverse():
    Refunds and disputes flip matching commissions to reversed with a
    conditional update and append a negative ledger line. Nothing is deleted.

approve_matured():
    Pending commissions that are not fraud-held and whose hold has passed
    become approved. Run periodically by Celery beat.

Every write is keyed by a unique constraint, so replaying the same payment
event, or two reports of the same payment, never produces a second
commission.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from affiliates.choices import (
    AffiliateStatus,
    AppliesTo,
    AttributedVia,
    CommissionStatus,
    FraudSeverity,
    LedgerLineKind,
    PlanType,
)
from affiliates.exceptions import CommissionConflictError
from affiliates.models import (
    Affiliate,
    AffiliateFraudConfig,
    CommissionEvent,
    CommissionLedgerLine,
    ReferralAttribution,
)
from affiliates.services.fraud_scorer import FraudScorer, Recommendation
from core.db import insert_or_get
from core.services import BaseService

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from affiliates.models import CommissionPlan
    from affiliates.services.fraud_scorer import FraudCheckResult
    from billing.events import PaymentReversed, PaymentSucceeded
    from patients.models import Patient

REVERSIBLE_STATUSES = (CommissionStatus.PENDING, CommissionStatus.APPROVED)


@dataclass(frozen=True)
class AttributionResult:
    """
    Outcome of attributing one payment.

    Attributes:
        commission_event: The commission (new or pre-existing), if any
        skipped_reason: Why no commission was created
        created: True if this call inserted the commission
        fraud: Fraud check result, when the scorer ran
    """

    commission_event: CommissionEvent | None = None
    skipped_reason: str | None = None
    created: bool = False
    fraud: FraudCheckResult | None = None

    @classmethod
    def skipped(
        cls, reason: str, fraud: FraudCheckResult | None = None
    ) -> AttributionResult:
        return cls(skipped_reason=reason, fraud=fraud)

    def as_details(self) -> dict[str, Any]:
        """Summary stored in the payment event's outcome."""
        details: dict[str, Any] = {}
        if self.commission_event is not None:
            details["commission_event_id"] = str(self.commission_event.pk)
            details["commission_status"] = self.commission_event.status
            details["commission_created"] = self.created
        if self.skipped_reason:
            details["commission_skipped"] = self.skipped_reason
        if self.fraud is not None:
            details["risk_score"] = self.fraud.risk_score
            details["recommendation"] = self.fraud.recommendation.value
        return details


def compute_commission(
    plan: CommissionPlan, amount_cents: int, *, is_first: bool, is_recurring: bool
) -> int:
    """
    Commission in cents for a payment.

    Percent plans round half up: 1050 cents at 333 bps is 34.965 → 35.

    Example:
        compute_commission(plan, 10000, is_first=True, is_recurring=False)
    """
    rate = plan.rate_for(is_first=is_first, is_recurring=is_recurring)
    if plan.plan_type == PlanType.FLAT:
        return rate
    return (amount_cents * rate + 5000) // 10000


class CommissionEngine(BaseService):
    """
    Commission attribution for referred payments.

    Args:
        fraud_scorer: Fraud scorer used as the gate (default: FraudScorer())
    """

    def __init__(self, fraud_scorer: FraudScorer | None = None):
        self.fraud_scorer = fraud_scorer or FraudScorer()

    def attribute(self, payment: PaymentSucceeded, patient: Patient) -> AttributionResult:
        """
        Create the commission for a successful payment, if one is due.

        Skips are normal outcomes, reported on the result, never raised.

        Args:
            payment: Parsed payment event
            patient: Patient the payment was resolved to

        Returns:
            AttributionResult

        Raises:
            CommissionConflictError: The insert conflicted and no existing
                commission matches either natural key
        """
        logger = self.get_logger()
        log_extra = {"event_id": payment.event_id, "patient_id": patient.pk}

        attribution = self._find_attribution(payment, patient)
        if attribution is None:
            return AttributionResult.skipped("no attribution")

        affiliate = attribution.affiliate
        if not affiliate.is_active:
            logger.info("Affiliate not active, no commission", extra=log_extra)
            return AttributionResult.skipped("affiliate not active")

        plan = affiliate.commission_plan
        if plan is None or not plan.is_active:
            logger.info("No active commission plan", extra=log_extra)
            return AttributionResult.skipped("no active commission plan")

        existing = self._existing(affiliate, payment)
        if existing is not None:
            return AttributionResult(commission_event=existing)

        is_first = self._is_first_payment(payment, patient)
        is_recurring = not is_first and payment.is_subscription_payment

        if plan.applies_to == AppliesTo.FIRST_PAYMENT_ONLY and not (
            is_first or is_recurring
        ):
            return AttributionResult.skipped("plan only applies to first payment")
        if is_recurring and not plan.recurring_enabled:
            return AttributionResult.skipped("recurring commissions disabled")

        amount = compute_commission(
            plan, payment.amount_cents, is_first=is_first, is_recurring=is_recurring
        )
        if amount <= 0:
            return AttributionResult.skipped("zero commission")

        fraud = self.fraud_scorer.score(
            affiliate,
            patient_email=payment.email or patient.email,
            ip=payment.client_ip,
            amount_cents=payment.amount_cents,
        )

        if fraud.recommendation == Recommendation.REJECT:
            self.fraud_scorer.record_alerts(
                fraud, affiliate, affected_amount_cents=payment.amount_cents
            )
            self._suspend_on_critical(affiliate, fraud)
            logger.warning(
                "Commission blocked by fraud checks",
                extra={**log_extra, "affiliate_id": affiliate.pk, "risk_score": fraud.risk_score},
            )
            return AttributionResult.skipped("rejected by fraud checks", fraud=fraud)

        approved = fraud.recommendation == Recommendation.APPROVE
        now = timezone.now()
        try:
            with transaction.atomic():
                event = CommissionEvent.objects.create(
                    affiliate=affiliate,
                    patient=patient,
                    clinic_id=affiliate.clinic_id,
                    source_event_id=payment.event_id,
                    payment_reference=payment.payment_reference,
                    source_object_id=payment.source_object_id,
                    charge_id=payment.charge_id,
                    event_amount_cents=payment.amount_cents,
                    commission_amount_cents=amount,
                    currency=payment.currency,
                    is_first_payment=is_first,
                    is_recurring=is_recurring,
                    status=(
                        CommissionStatus.APPROVED if approved else CommissionStatus.PENDING
                    ),
                    risk_score=fraud.risk_score,
                    fraud_hold=fraud.recommendation == Recommendation.REVIEW,
                    hold_until=payment.occurred_at + timedelta(days=plan.hold_days),
                    occurred_at=payment.occurred_at,
                    approved_at=now if approved else None,
                )
                CommissionLedgerLine.objects.create(
                    commission_event=event,
                    kind=LedgerLineKind.ACCRUAL,
                    amount_cents=amount,
                    source_event_id=payment.event_id,
                )
        except IntegrityError as exc:
            existing = self._existing(affiliate, payment)
            if existing is None:
                raise CommissionConflictError(
                    "Commission insert conflicted with no matching row",
                    details={
                        "event_id": payment.event_id,
                        "affiliate_id": affiliate.pk,
                        "error": str(exc),
                    },
                ) from exc
            return AttributionResult(commission_event=existing)

        self.fraud_scorer.record_alerts(
            fraud, affiliate, commission_event=event, affected_amount_cents=payment.amount_cents
        )
        logger.info(
            f"Commission {event.status}: {amount} cents",
            extra={
                **log_extra,
                "affiliate_id": affiliate.pk,
                "commission_event_id": str(event.pk),
                "fraud_hold": event.fraud_hold,
            },
        )
        return AttributionResult(commission_event=event, created=True, fraud=fraud)

    def reverse(self, reversal: PaymentReversed) -> list[CommissionEvent]:
        """
        Reverse commissions for a refunded or disputed payment.

        A commission is matched when its source object, charge or payment
        reference equals any id the reversal carries. Already reversed
        commissions are left alone.

        Returns:
            Commissions reversed by this call
        """
        logger = self.get_logger()
        refs = {reversal.object_id, reversal.charge_id, reversal.payment_intent_id} - {
            None
        }
        match = Q()
        for ref in refs:
            match |= Q(source_object_id=ref) | Q(charge_id=ref) | Q(payment_reference=ref)

        candidates = CommissionEvent.objects.select_related(
            "affiliate__commission_plan"
        ).filter(match, status__in=REVERSIBLE_STATUSES, reversed_at__isnull=True)

        reversed_events = []
        for event in candidates:
            plan = event.affiliate.commission_plan
            if plan is not None and not plan.clawback_enabled:
                logger.info(
                    "Clawback disabled, commission kept",
                    extra={"commission_event_id": str(event.pk), "event_id": reversal.event_id},
                )
                continue

            now = timezone.now()
            updated = CommissionEvent.objects.filter(
                pk=event.pk, status__in=REVERSIBLE_STATUSES, reversed_at__isnull=True
            ).update(
                status=CommissionStatus.REVERSED,
                reversed_at=now,
                reversal_reason=reversal.reason,
                reversal_event_id=reversal.event_id,
                updated_at=now,
            )
            if not updated:
                continue

            # An unknown refund amount reverses the whole commission
            clawback = event.commission_amount_cents
            if reversal.amount_cents:
                clawback = min(clawback, reversal.amount_cents)
            insert_or_get(
                CommissionLedgerLine,
                commission_event=event,
                kind=LedgerLineKind.REVERSAL,
                defaults={"amount_cents": -clawback, "source_event_id": reversal.event_id},
            )

            event.refresh_from_db()
            reversed_events.append(event)
            logger.info(
                f"Commission reversed ({reversal.reason})",
                extra={
                    "commission_event_id": str(event.pk),
                    "event_id": reversal.event_id,
                    "clawback_cents": clawback,
                },
            )
        return reversed_events

    @classmethod
    def approve_matured(cls, now: datetime | None = None) -> int:
        """
        Approve pending, non-held commissions whose hold has passed.

        Returns:
            Number of commissions approved
        """
        now = now or timezone.now()
        approved = (
            CommissionEvent.objects.filter(
                status=CommissionStatus.PENDING, fraud_hold=False
            )
            .filter(Q(hold_until__isnull=True) | Q(hold_until__lte=now))
            .update(status=CommissionStatus.APPROVED, approved_at=now, updated_at=now)
        )
        if approved:
            cls.get_logger().info(f"Approved {approved} matured commission(s)")
        return approved

    # =========================================================================
    # Internals
    # =========================================================================

    def _find_attribution(
        self, payment: PaymentSucceeded, patient: Patient
    ) -> ReferralAttribution | None:
        attribution = (
            ReferralAttribution.objects.select_related("affiliate__commission_plan")
            .filter(patient=patient)
            .first()
        )
        if attribution is not None:
            return attribution

        ref_code = (payment.metadata.get("ref_code") or "").strip()
        if not ref_code:
            return None

        affiliate = Affiliate.objects.filter(
            ref_code__iexact=ref_code,
            clinic_id=patient.clinic_id,
            status=AffiliateStatus.ACTIVE,
        ).first()
        if affiliate is None:
            self.get_logger().info(
                "Payment ref_code matches no active affiliate",
                extra={"event_id": payment.event_id, "ref_code": ref_code},
            )
            return None

        attribution, created = insert_or_get(
            ReferralAttribution,
            patient=patient,
            defaults={
                "affiliate": affiliate,
                "clinic_id": patient.clinic_id,
                "attributed_via": AttributedVia.REF_CODE,
            },
        )
        if created:
            self.get_logger().info(
                "Attributed patient from payment ref_code",
                extra={"patient_id": patient.pk, "affiliate_id": affiliate.pk},
            )
        return ReferralAttribution.objects.select_related(
            "affiliate__commission_plan"
        ).get(pk=attribution.pk)

    @staticmethod
    def _existing(affiliate: Affiliate, payment: PaymentSucceeded) -> CommissionEvent | None:
        return (
            CommissionEvent.objects.filter(affiliate=affiliate)
            .filter(
                Q(source_event_id=payment.event_id)
                | Q(payment_reference=payment.payment_reference)
            )
            .first()
        )

    @staticmethod
    def _is_first_payment(payment: PaymentSucceeded, patient: Patient) -> bool:
        from billing.models import PaymentEvent
        from billing.state_machines import PAYMENT_KINDS, PaymentEventStatus

        return not (
            PaymentEvent.objects.filter(
                patient=patient,
                kind__in=PAYMENT_KINDS,
                status=PaymentEventStatus.PROCESSED,
            )
            .exclude(stripe_event_id=payment.event_id)
            .exclude(payment_reference=payment.payment_reference)
            .exists()
        )

    def _suspend_on_critical(self, affiliate: Affiliate, fraud: FraudCheckResult) -> None:
        if not any(a.severity == FraudSeverity.CRITICAL for a in fraud.alerts):
            return
        config = AffiliateFraudConfig.for_clinic(affiliate.clinic_id)
        if not config.auto_suspend_on_critical:
            return
        suspended = Affiliate.objects.filter(
            pk=affiliate.pk, status=AffiliateStatus.ACTIVE
        ).update(status=AffiliateStatus.SUSPENDED, updated_at=timezone.now())
        if suspended:
            self.get_logger().warning(
                "Affiliate auto-suspended after critical fraud alert",
                extra={"affiliate_id": affiliate.pk, "clinic_id": affiliate.clinic_id},
            )
