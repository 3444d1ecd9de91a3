"""
Tests for PatientResolver.

Covers the primary path (existing link, patient customer id), the email
fallback, idempotence of repeated resolution and degraded Stripe lookups.
"""

import pytest

from billing.exceptions import StripeAPIUnavailableError
from patients.models import CustomerLink, LinkedVia, Patient
from patients.tests.factories import (
    ClinicFactory,
    CustomerLinkFactory,
    PatientFactory,
)


@pytest.mark.django_db
class TestPrimaryPath:
    """Resolution without Stripe calls."""

    def test_existing_link_wins(self, resolver, customer_lookup):
        link = CustomerLinkFactory(stripe_customer_id="cus_linked")

        resolved = resolver.resolve("cus_linked")

        assert resolved.patient == link.patient
        assert resolved.clinic == link.clinic
        assert resolved.link_created is False
        assert customer_lookup.calls == []

    def test_patient_customer_id_creates_link(self, resolver, patient):
        Patient.objects.filter(pk=patient.pk).update(stripe_customer_id="cus_direct")

        resolved = resolver.resolve("cus_direct")

        assert resolved.patient == patient
        assert resolved.linked_via == LinkedVia.DIRECT
        assert resolved.link_created is True
        assert CustomerLink.objects.get(stripe_customer_id="cus_direct").patient == patient

    def test_missing_customer_ref_returns_none(self, resolver):
        assert resolver.resolve(None) is None
        assert resolver.resolve("") is None


@pytest.mark.django_db
class TestEmailFallback:
    """Fallback matching by normalized email within a clinic."""

    def test_matches_event_email_hint(self, resolver, customer_lookup, clinic, patient):
        resolved = resolver.resolve(
            "cus_new", clinic_hint=clinic, email_hint="  jane.doe@EXAMPLE.com"
        )

        assert resolved.patient == patient
        assert resolved.linked_via == LinkedVia.EMAIL_FALLBACK
        assert customer_lookup.calls == []

    def test_fetches_email_from_stripe_without_hint(
        self, resolver, customer_lookup, clinic, patient
    ):
        customer_lookup.add("cus_new", email="JANE.DOE@example.com")

        resolved = resolver.resolve("cus_new", clinic_hint=clinic)

        assert resolved.patient == patient
        assert customer_lookup.calls == ["cus_new"]

    def test_mirrors_customer_id_onto_patient(self, resolver, clinic, patient):
        resolver.resolve("cus_new", clinic_hint=clinic, email_hint=patient.email)

        patient.refresh_from_db()
        assert patient.stripe_customer_id == "cus_new"

    def test_repeated_resolution_is_idempotent(
        self, resolver, customer_lookup, clinic, patient
    ):
        customer_lookup.add("cus_new", email=patient.email)

        first = resolver.resolve("cus_new", clinic_hint=clinic)
        second = resolver.resolve("cus_new", clinic_hint=clinic)

        assert first.patient == second.patient
        assert first.link_created is True
        assert second.link_created is False
        assert CustomerLink.objects.filter(stripe_customer_id="cus_new").count() == 1
        # The second call is served by the link
        assert customer_lookup.calls == ["cus_new"]

    def test_email_in_other_clinic_does_not_match(self, resolver, patient):
        other_clinic = ClinicFactory()

        resolved = resolver.resolve(
            "cus_new", clinic_hint=other_clinic, email_hint=patient.email
        )

        assert resolved is None
        assert not CustomerLink.objects.exists()

    def test_no_fallback_without_clinic(self, resolver, customer_lookup, patient):
        assert resolver.resolve("cus_new", email_hint=patient.email) is None
        assert customer_lookup.calls == []

    def test_deleted_customer_is_a_miss(self, resolver, customer_lookup, clinic, patient):
        customer_lookup.add("cus_gone", email=patient.email, deleted=True)

        assert resolver.resolve("cus_gone", clinic_hint=clinic) is None


@pytest.mark.django_db
class TestDegradedLookup:
    """Stripe failures are treated as a miss, never raised."""

    def test_stripe_error_is_a_miss(self, resolver, customer_lookup, clinic, patient):
        customer_lookup.error = StripeAPIUnavailableError("down")

        assert resolver.resolve("cus_new", clinic_hint=clinic) is None

    def test_open_breaker_skips_lookup(
        self, resolver, customer_lookup, resolver_breaker, clinic, patient
    ):
        resolver_breaker.record_failure()
        resolver_breaker.record_failure()

        assert resolver.resolve("cus_new", clinic_hint=clinic) is None
        assert customer_lookup.calls == []

    def test_failures_open_the_breaker(
        self, resolver, customer_lookup, resolver_breaker, clinic
    ):
        customer_lookup.error = StripeAPIUnavailableError("down")

        resolver.resolve("cus_a", clinic_hint=clinic)
        resolver.resolve("cus_b", clinic_hint=clinic)

        assert resolver_breaker.is_available() is False


@pytest.mark.django_db
def test_link_race_resolves_to_stored_row(resolver, clinic):
    """A link written by a concurrent resolver is returned, not duplicated."""
    winner = PatientFactory(clinic=clinic)
    loser = PatientFactory(clinic=clinic, stripe_customer_id="cus_race")
    CustomerLinkFactory(stripe_customer_id="cus_race", patient=winner, clinic=clinic)

    resolved = resolver._link("cus_race", loser, LinkedVia.DIRECT)

    assert resolved.patient == winner
    assert resolved.link_created is False
