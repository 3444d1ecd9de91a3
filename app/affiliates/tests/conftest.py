"""
Pytest fixtures for affiliate tests.

No test reaches an IP reputation provider: scorers get a FakeIpIntelligence,
and IpIntelligenceCache tests pass an httpx.MockTransport.
"""

from __future__ import annotations

import pytest
from django.utils import timezone

from affiliates.services.fraud_scorer import FraudScorer
from affiliates.services.ip_intelligence import IpReputation
from affiliates.tests.factories import AffiliateFactory, ReferralAttributionFactory
from billing.events import PaymentSource, PaymentSucceeded
from core.helpers import hash_ip
from patients.tests.factories import ClinicFactory, PatientFactory


class FakeIpIntelligence:
    """Returns configured reputations; unknown addresses are clean."""

    def __init__(self):
        self.reputations: dict[str, IpReputation] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []

    def set(self, ip: str, **flags):
        self.reputations[ip] = IpReputation(ip_hash=hash_ip(ip), **flags)

    async def alookup(self, ip: str) -> IpReputation:
        self.calls.append(ip)
        if self.error is not None:
            raise self.error
        return self.reputations.get(ip, IpReputation(ip_hash=hash_ip(ip)))


class StubFraudScorer(FraudScorer):
    """FraudScorer whose score() returns a fixed result."""

    def __init__(self, result):
        super().__init__(ip_intelligence=FakeIpIntelligence())
        self.result = result
        self.calls: list[dict] = []

    def score(self, affiliate, patient_email=None, ip=None, amount_cents=None):
        self.calls.append(
            {"affiliate": affiliate, "patient_email": patient_email, "ip": ip}
        )
        return self.result


def build_payment(**overrides) -> PaymentSucceeded:
    """A 100.00 payment_intent.succeeded event."""
    fields = {
        "event_id": "evt_payment_001",
        "event_type": "payment_intent.succeeded",
        "occurred_at": timezone.now(),
        "customer_id": "cus_affiliate001",
        "metadata": {},
        "source": PaymentSource.INTENT,
        "object_id": "pi_payment_001",
        "amount": 10000,
        "currency_code": "usd",
        "payment_intent_id": "pi_payment_001",
        "charge_id": "ch_payment_001",
    }
    fields.update(overrides)
    return PaymentSucceeded(**fields)


@pytest.fixture
def fake_ip_intel():
    return FakeIpIntelligence()


@pytest.fixture
def scorer(fake_ip_intel):
    return FraudScorer(ip_intelligence=fake_ip_intel)


@pytest.fixture
def clinic(db):
    return ClinicFactory()


@pytest.fixture
def affiliate(clinic):
    return AffiliateFactory(clinic=clinic, email="partner@partners.example.com")


@pytest.fixture
def referred_patient(affiliate):
    attribution = ReferralAttributionFactory(
        affiliate=affiliate,
        patient=PatientFactory(clinic=affiliate.clinic, email="pat@example.com"),
    )
    return attribution.patient
