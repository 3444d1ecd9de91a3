"""
Pytest fixtures for patient tests.

The resolver is built with a fake customer lookup and a breaker under a
private name so no test talks to Stripe or shares circuit state.
"""

import pytest

from billing.adapters import CustomerResult
from core.circuit_breaker import CircuitBreaker
from patients.services import PatientResolver
from patients.tests.factories import ClinicFactory, PatientFactory


class FakeCustomerLookup:
    """Records lookups and returns configured customers."""

    def __init__(self):
        self.customers: dict[str, CustomerResult] = {}
        self.calls: list[str] = []
        self.error: Exception | None = None

    def add(self, customer_id: str, email: str | None, deleted: bool = False):
        self.customers[customer_id] = CustomerResult(
            id=customer_id, email=email, deleted=deleted
        )

    def __call__(self, customer_id: str) -> CustomerResult:
        self.calls.append(customer_id)
        if self.error is not None:
            raise self.error
        return self.customers[customer_id]


@pytest.fixture
def customer_lookup():
    return FakeCustomerLookup()


@pytest.fixture
def resolver_breaker():
    return CircuitBreaker(name="test-stripe-resolver", failure_threshold=2)


@pytest.fixture
def resolver(customer_lookup, resolver_breaker):
    return PatientResolver(customer_lookup=customer_lookup, breaker=resolver_breaker)


@pytest.fixture
def clinic(db):
    return ClinicFactory()


@pytest.fixture
def patient(clinic):
    return PatientFactory(clinic=clinic, email="Jane.Doe@Example.com")
