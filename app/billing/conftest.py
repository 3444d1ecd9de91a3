"""
Pytest fixtures shared by every billing test package.

Dispatchers are built with a fake customer lookup, a private circuit
breaker and a fraud scorer that always approves, so no test talks to
Stripe or an IP reputation provider.
"""

import pytest

from affiliates.services import CommissionEngine
from affiliates.services.fraud_scorer import FraudCheckResult, FraudScorer
from affiliates.tests.factories import AffiliateFactory, ReferralAttributionFactory
from billing.adapters import CustomerResult
from billing.dispatcher import EventDispatcher
from core.circuit_breaker import CircuitBreaker
from patients.services import PatientResolver
from patients.tests.factories import ClinicFactory, CustomerLinkFactory, PatientFactory


class ApprovingFraudScorer(FraudScorer):
    """Scores every payment clean."""

    def score(self, affiliate, patient_email=None, ip=None, amount_cents=None):
        return FraudCheckResult.clean()


class FakeCustomerLookup:
    """Stripe customer lookup returning configured emails."""

    def __init__(self):
        self.emails: dict[str, str] = {}
        self.calls: list[str] = []

    def __call__(self, customer_id: str) -> CustomerResult:
        self.calls.append(customer_id)
        return CustomerResult(id=customer_id, email=self.emails.get(customer_id))


class FakeClock:
    """Monotonic clock a test can move forward."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def customer_lookup():
    return FakeCustomerLookup()


@pytest.fixture
def resolver(customer_lookup):
    return PatientResolver(
        customer_lookup=customer_lookup,
        breaker=CircuitBreaker(name="test-stripe-billing", failure_threshold=2),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher(resolver, clock):
    return EventDispatcher(
        resolver=resolver,
        commission_engine=CommissionEngine(fraud_scorer=ApprovingFraudScorer()),
        budget_seconds=10.0,
        clock=clock,
    )


@pytest.fixture
def clinic(db):
    return ClinicFactory()


@pytest.fixture
def patient(clinic):
    """Patient linked to Stripe customer cus_001."""
    patient = PatientFactory(clinic=clinic, email="jane@example.com")
    CustomerLinkFactory(stripe_customer_id="cus_001", patient=patient, clinic=clinic)
    return patient


@pytest.fixture
def affiliate(clinic):
    return AffiliateFactory(clinic=clinic, email="partner@partners.example.com")


@pytest.fixture
def referral(affiliate, patient):
    """The linked patient, referred by the affiliate (10%, first payment only)."""
    return ReferralAttributionFactory(affiliate=affiliate, patient=patient)
