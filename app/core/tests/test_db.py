"""Tests for core.db.insert_or_get."""

import pytest

from core.db import insert_or_get
from core.exceptions import ConflictError
from patients.models import Clinic, CustomerLink
from patients.tests.factories import ClinicFactory, PatientFactory


@pytest.mark.django_db
class TestInsertOrGet:
    def test_inserts_new_row(self):
        patient = PatientFactory()

        link, created = insert_or_get(
            CustomerLink,
            stripe_customer_id="cus_1",
            defaults={"patient": patient, "clinic": patient.clinic},
        )

        assert created is True
        assert link.patient == patient

    def test_conflict_returns_existing_row(self):
        first = PatientFactory()
        second = PatientFactory(clinic=first.clinic)
        insert_or_get(
            CustomerLink,
            stripe_customer_id="cus_1",
            defaults={"patient": first, "clinic": first.clinic},
        )

        link, created = insert_or_get(
            CustomerLink,
            stripe_customer_id="cus_1",
            defaults={"patient": second, "clinic": second.clinic},
        )

        assert created is False
        assert link.patient == first
        assert CustomerLink.objects.count() == 1

    def test_conflict_on_other_constraint_raises(self):
        ClinicFactory(stripe_account_id="acct_taken")

        with pytest.raises(ConflictError) as exc_info:
            insert_or_get(
                Clinic,
                name="Another",
                defaults={"stripe_account_id": "acct_taken"},
            )

        assert exc_info.value.error_code == "NATURAL_KEY_CONFLICT"
