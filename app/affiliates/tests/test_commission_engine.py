"""Tests for CommissionEngine attribution, reversal and maturation."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from affiliates.choices import (
    AffiliateStatus,
    AppliesTo,
    AttributedVia,
    CommissionStatus,
    FraudAlertType,
    FraudSeverity,
    LedgerLineKind,
    PlanType,
)
from affiliates.exceptions import CommissionConflictError
from affiliates.models import (
    CommissionEvent,
    CommissionLedgerLine,
    FraudAlert,
    ReferralAttribution,
)
from affiliates.services.commission_engine import CommissionEngine, compute_commission
from affiliates.services.fraud_scorer import FraudCheck, FraudCheckResult, FraudScorer
from affiliates.tests.conftest import FakeIpIntelligence, StubFraudScorer, build_payment
from affiliates.tests.factories import (
    AffiliateFactory,
    AffiliateFraudConfigFactory,
    CommissionEventFactory,
    CommissionLedgerLineFactory,
    CommissionPlanFactory,
)
from billing.events import PaymentReversed, ReversalType
from patients.tests.factories import PatientFactory


def fraud_result(*severities):
    return FraudCheckResult.from_alerts(
        [
            FraudCheck(
                alert_type=FraudAlertType.SUSPICIOUS_PATTERN,
                severity=severity,
                description="test signal",
                evidence={"severity": str(severity)},
            )
            for severity in severities
        ]
    )


def build_refund(**overrides):
    fields = {
        "event_id": "evt_refund_001",
        "event_type": "charge.refunded",
        "occurred_at": timezone.now(),
        "reversal": ReversalType.REFUND,
        "object_id": "ch_payment_001",
        "charge_id": "ch_payment_001",
        "payment_intent_id": "pi_payment_001",
        "amount": 10000,
    }
    fields.update(overrides)
    return PaymentReversed(**fields)


@pytest.fixture
def approving_engine():
    return CommissionEngine(fraud_scorer=StubFraudScorer(FraudCheckResult.clean()))


class TestComputeCommission:
    def test_percent_rounds_half_up(self):
        plan = CommissionPlanFactory.build(plan_type=PlanType.PERCENT, percent_bps=333)

        assert compute_commission(plan, 1050, is_first=True, is_recurring=False) == 35
        assert compute_commission(plan, 1000, is_first=True, is_recurring=False) == 33

    def test_exact_half_rounds_up(self):
        plan = CommissionPlanFactory.build(plan_type=PlanType.PERCENT, percent_bps=5000)

        assert compute_commission(plan, 1, is_first=True, is_recurring=False) == 1

    def test_flat_amount(self):
        plan = CommissionPlanFactory.build(plan_type=PlanType.FLAT, flat_amount_cents=2500)

        assert compute_commission(plan, 99999, is_first=True, is_recurring=False) == 2500

    def test_initial_override_wins_for_first_payment(self):
        plan = CommissionPlanFactory.build(percent_bps=1000, initial_percent_bps=2000)

        assert compute_commission(plan, 10000, is_first=True, is_recurring=False) == 2000
        assert compute_commission(plan, 10000, is_first=False, is_recurring=False) == 1000

    def test_recurring_override(self):
        plan = CommissionPlanFactory.build(
            plan_type=PlanType.FLAT,
            flat_amount_cents=1000,
            recurring_flat_amount_cents=300,
        )

        assert compute_commission(plan, 5000, is_first=False, is_recurring=True) == 300


@pytest.mark.django_db
class TestAttributeSkips:
    def test_no_attribution(self, approving_engine, clinic):
        patient = PatientFactory(clinic=clinic)

        result = approving_engine.attribute(build_payment(), patient)

        assert result.commission_event is None
        assert result.skipped_reason == "no attribution"

    def test_inactive_affiliate(self, approving_engine, affiliate, referred_patient):
        affiliate.status = AffiliateStatus.SUSPENDED
        affiliate.save()

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.skipped_reason == "affiliate not active"

    def test_no_active_plan(self, approving_engine, affiliate, referred_patient):
        plan = affiliate.commission_plan
        plan.is_active = False
        plan.save()

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.skipped_reason == "no active commission plan"

    def test_zero_commission(self, approving_engine, affiliate, referred_patient):
        plan = affiliate.commission_plan
        plan.percent_bps = 0
        plan.save()

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.skipped_reason == "zero commission"
        assert CommissionEvent.objects.count() == 0


@pytest.mark.django_db
class TestAttribute:
    def test_approved_commission_with_accrual_line(self, approving_engine, affiliate, referred_patient):
        payment = build_payment()

        result = approving_engine.attribute(payment, referred_patient)

        event = result.commission_event
        assert result.created is True
        assert event.status == CommissionStatus.APPROVED
        assert event.approved_at is not None
        assert event.commission_amount_cents == 1000
        assert event.event_amount_cents == 10000
        assert event.payment_reference == "pi_payment_001"
        assert event.charge_id == "ch_payment_001"
        assert event.is_first_payment is True
        assert event.fraud_hold is False
        assert event.hold_until == payment.occurred_at + timedelta(days=30)

        line = CommissionLedgerLine.objects.get(commission_event=event)
        assert line.kind == LedgerLineKind.ACCRUAL
        assert line.amount_cents == 1000
        assert event.net_amount_cents == 1000

    def test_scorer_receives_email_and_client_ip(self, affiliate, referred_patient):
        scorer = StubFraudScorer(FraudCheckResult.clean())
        engine = CommissionEngine(fraud_scorer=scorer)

        engine.attribute(
            build_payment(metadata={"client_ip": "8.8.8.8"}, email="payer@example.com"),
            referred_patient,
        )

        (call,) = scorer.calls
        assert call["ip"] == "8.8.8.8"
        assert call["patient_email"] == "payer@example.com"

    def test_review_holds_commission_and_links_alerts(self, affiliate, referred_patient):
        engine = CommissionEngine(
            fraud_scorer=StubFraudScorer(fraud_result(FraudSeverity.HIGH))
        )

        result = engine.attribute(build_payment(), referred_patient)

        event = result.commission_event
        assert event.status == CommissionStatus.PENDING
        assert event.fraud_hold is True
        assert event.risk_score == 25
        assert event.approved_at is None
        alert = FraudAlert.objects.get()
        assert alert.commission_event == event
        assert alert.affected_amount_cents == 10000

    def test_reject_creates_alerts_only(self, affiliate, referred_patient):
        engine = CommissionEngine(
            fraud_scorer=StubFraudScorer(fraud_result(FraudSeverity.CRITICAL))
        )

        result = engine.attribute(build_payment(), referred_patient)

        assert result.commission_event is None
        assert result.skipped_reason == "rejected by fraud checks"
        assert CommissionEvent.objects.count() == 0
        alert = FraudAlert.objects.get()
        assert alert.commission_event is None
        affiliate.refresh_from_db()
        assert affiliate.status == AffiliateStatus.ACTIVE

    def test_reject_suspends_when_configured(self, affiliate, referred_patient):
        AffiliateFraudConfigFactory(clinic=affiliate.clinic, auto_suspend_on_critical=True)
        engine = CommissionEngine(
            fraud_scorer=StubFraudScorer(fraud_result(FraudSeverity.CRITICAL))
        )

        engine.attribute(build_payment(), referred_patient)

        affiliate.refresh_from_db()
        assert affiliate.status == AffiliateStatus.SUSPENDED

    def test_real_scorer_rejects_self_referral(self, affiliate, referred_patient):
        engine = CommissionEngine(
            fraud_scorer=FraudScorer(ip_intelligence=FakeIpIntelligence())
        )

        result = engine.attribute(build_payment(email=affiliate.email), referred_patient)

        assert result.skipped_reason == "rejected by fraud checks"
        assert FraudAlert.objects.get().alert_type == FraudAlertType.SELF_REFERRAL


@pytest.mark.django_db
class TestAttributeIdempotency:
    def test_same_event_twice_creates_one_commission(self, approving_engine, affiliate, referred_patient):
        payment = build_payment()

        first = approving_engine.attribute(payment, referred_patient)
        second = approving_engine.attribute(payment, referred_patient)

        assert second.commission_event == first.commission_event
        assert second.created is False
        assert CommissionEvent.objects.count() == 1
        assert CommissionLedgerLine.objects.count() == 1

    def test_second_report_of_same_payment_is_absorbed(self, approving_engine, affiliate, referred_patient):
        approving_engine.attribute(build_payment(), referred_patient)

        checkout = build_payment(
            event_id="evt_checkout_001",
            event_type="checkout.session.completed",
            object_id="cs_test_001",
            charge_id=None,
        )
        result = approving_engine.attribute(checkout, referred_patient)

        assert result.created is False
        assert CommissionEvent.objects.count() == 1

    def test_existing_commission_skips_scoring(self, affiliate, referred_patient):
        existing = CommissionEventFactory(
            affiliate=affiliate,
            patient=referred_patient,
            source_event_id="evt_payment_001",
        )
        engine = CommissionEngine(
            fraud_scorer=StubFraudScorer(fraud_result(FraudSeverity.HIGH))
        )

        result = engine.attribute(build_payment(), referred_patient)

        assert result.commission_event == existing
        assert FraudAlert.objects.count() == 0

    def test_concurrent_insert_returns_winning_row(self, approving_engine, affiliate, referred_patient):
        # The other worker commits between this worker's lookup and insert
        winner = CommissionEventFactory(
            affiliate=affiliate,
            patient=referred_patient,
            source_event_id="evt_payment_001",
        )

        with patch.object(
            CommissionEngine, "_existing", side_effect=[None, winner]
        ) as mock_existing:
            result = approving_engine.attribute(build_payment(), referred_patient)

        assert mock_existing.call_count == 2
        assert result.commission_event == winner
        assert result.created is False
        assert CommissionEvent.objects.count() == 1
        assert CommissionLedgerLine.objects.filter(commission_event=winner).count() == 0

    def test_conflict_without_matching_row_raises(self, approving_engine, affiliate, referred_patient):
        CommissionEventFactory(
            affiliate=affiliate,
            patient=referred_patient,
            source_event_id="evt_payment_001",
        )

        with (
            patch.object(CommissionEngine, "_existing", return_value=None),
            pytest.raises(CommissionConflictError) as exc_info,
        ):
            approving_engine.attribute(build_payment(), referred_patient)

        assert exc_info.value.details["event_id"] == "evt_payment_001"
        assert exc_info.value.details["affiliate_id"] == affiliate.pk
        assert CommissionEvent.objects.count() == 1


@pytest.mark.django_db
class TestFirstAndRecurring:
    def _prior_payment(self, patient, reference):
        from billing.tests.factories import PaymentEventFactory

        return PaymentEventFactory(
            patient=patient, payment_reference=reference, processed=True
        )

    def test_prior_payment_makes_it_not_first(self, approving_engine, affiliate, referred_patient):
        self._prior_payment(referred_patient, "pi_earlier")

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.skipped_reason == "plan only applies to first payment"

    def test_prior_report_of_same_payment_still_first(self, approving_engine, affiliate, referred_patient):
        self._prior_payment(referred_patient, "pi_payment_001")

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.commission_event.is_first_payment is True

    def test_recurring_skipped_when_disabled(self, approving_engine, affiliate, referred_patient):
        self._prior_payment(referred_patient, "pi_earlier")

        result = approving_engine.attribute(
            build_payment(subscription_id="sub_001", invoice_id="in_002"),
            referred_patient,
        )

        assert result.skipped_reason == "recurring commissions disabled"

    def test_recurring_paid_when_enabled(self, approving_engine, affiliate, referred_patient):
        plan = affiliate.commission_plan
        plan.recurring_enabled = True
        plan.recurring_percent_bps = 500
        plan.save()
        self._prior_payment(referred_patient, "pi_earlier")

        result = approving_engine.attribute(
            build_payment(subscription_id="sub_001", invoice_id="in_002"),
            referred_patient,
        )

        event = result.commission_event
        assert event.is_recurring is True
        assert event.is_first_payment is False
        assert event.commission_amount_cents == 500

    def test_all_payments_plan_pays_repeat_purchase(self, approving_engine, affiliate, referred_patient):
        plan = affiliate.commission_plan
        plan.applies_to = AppliesTo.ALL_PAYMENTS
        plan.save()
        self._prior_payment(referred_patient, "pi_earlier")

        result = approving_engine.attribute(build_payment(), referred_patient)

        assert result.commission_event.is_first_payment is False


@pytest.mark.django_db
class TestRefCodeAttribution:
    def test_ref_code_creates_attribution(self, approving_engine, affiliate, clinic):
        patient = PatientFactory(clinic=clinic)

        result = approving_engine.attribute(
            build_payment(metadata={"ref_code": affiliate.ref_code.lower()}), patient
        )

        attribution = ReferralAttribution.objects.get(patient=patient)
        assert attribution.affiliate == affiliate
        assert attribution.attributed_via == AttributedVia.REF_CODE
        assert result.commission_event is not None

    def test_ref_code_from_other_clinic_is_ignored(self, approving_engine, clinic):
        outsider = AffiliateFactory()
        patient = PatientFactory(clinic=clinic)

        result = approving_engine.attribute(
            build_payment(metadata={"ref_code": outsider.ref_code}), patient
        )

        assert result.skipped_reason == "no attribution"
        assert ReferralAttribution.objects.count() == 0

    def test_existing_attribution_wins_over_ref_code(self, approving_engine, affiliate, referred_patient):
        other = AffiliateFactory(clinic=affiliate.clinic)

        result = approving_engine.attribute(
            build_payment(metadata={"ref_code": other.ref_code}), referred_patient
        )

        assert result.commission_event.affiliate == affiliate


@pytest.mark.django_db
class TestReverse:
    def _commission(self, affiliate, patient, **kwargs):
        event = CommissionEventFactory(
            affiliate=affiliate,
            patient=patient,
            payment_reference="pi_payment_001",
            source_object_id="pi_payment_001",
            charge_id="ch_payment_001",
            **kwargs,
        )
        CommissionLedgerLineFactory(commission_event=event)
        return event

    def test_full_refund_nets_to_zero(self, approving_engine, affiliate, referred_patient):
        event = self._commission(affiliate, referred_patient)

        (reversed_event,) = approving_engine.reverse(build_refund())

        assert reversed_event.pk == event.pk
        assert reversed_event.status == CommissionStatus.REVERSED
        assert reversed_event.reversed_at is not None
        assert reversed_event.reversal_reason == "refund"
        assert reversed_event.net_amount_cents == 0
        reversal = reversed_event.ledger_lines.get(kind=LedgerLineKind.REVERSAL)
        assert reversal.amount_cents == -1000
        assert reversal.source_event_id == "evt_refund_001"

    def test_partial_refund_claws_back_at_most_refund(self, approving_engine, affiliate, referred_patient):
        self._commission(affiliate, referred_patient)

        (reversed_event,) = approving_engine.reverse(build_refund(amount=400))

        assert reversed_event.net_amount_cents == 600

    def test_dispute_matched_by_charge(self, approving_engine, affiliate, referred_patient):
        self._commission(affiliate, referred_patient, status=CommissionStatus.PENDING)

        (reversed_event,) = approving_engine.reverse(
            build_refund(
                event_id="evt_dispute_001",
                event_type="charge.dispute.created",
                reversal=ReversalType.DISPUTE,
                object_id="dp_001",
                payment_intent_id=None,
            )
        )

        assert reversed_event.reversal_reason == "chargeback"

    def test_second_reversal_is_noop(self, approving_engine, affiliate, referred_patient):
        self._commission(affiliate, referred_patient)
        approving_engine.reverse(build_refund())

        again = approving_engine.reverse(build_refund(event_id="evt_refund_002"))

        assert again == []
        assert CommissionLedgerLine.objects.filter(kind=LedgerLineKind.REVERSAL).count() == 1

    def test_clawback_disabled_keeps_commission(self, approving_engine, affiliate, referred_patient):
        plan = affiliate.commission_plan
        plan.clawback_enabled = False
        plan.save()
        event = self._commission(affiliate, referred_patient)

        assert approving_engine.reverse(build_refund()) == []

        event.refresh_from_db()
        assert event.status == CommissionStatus.APPROVED

    def test_unrelated_refund_matches_nothing(self, approving_engine, affiliate, referred_patient):
        self._commission(affiliate, referred_patient)

        result = approving_engine.reverse(
            build_refund(object_id="ch_other", charge_id="ch_other", payment_intent_id="pi_other")
        )

        assert result == []


@pytest.mark.django_db
class TestApproveMatured:
    def test_promotes_matured_unheld_commissions(self, affiliate):
        with freeze_time("2026-05-01 12:00:00"):
            now = timezone.now()
            matured = CommissionEventFactory(
                affiliate=affiliate,
                status=CommissionStatus.PENDING,
                hold_until=now - timedelta(minutes=1),
            )
            held = CommissionEventFactory(
                affiliate=affiliate,
                status=CommissionStatus.PENDING,
                fraud_hold=True,
                hold_until=now - timedelta(days=1),
            )
            waiting = CommissionEventFactory(
                affiliate=affiliate,
                status=CommissionStatus.PENDING,
                hold_until=now + timedelta(days=1),
            )

            approved = CommissionEngine.approve_matured()

        assert approved == 1
        matured.refresh_from_db()
        held.refresh_from_db()
        waiting.refresh_from_db()
        assert matured.status == CommissionStatus.APPROVED
        assert matured.approved_at is not None
        assert held.status == CommissionStatus.PENDING
        assert waiting.status == CommissionStatus.PENDING
