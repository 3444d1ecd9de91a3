"""
Factory Boy factories for patient test data.

Usage:
    from patients.tests.factories import ClinicFactory, PatientFactory

    clinic = ClinicFactory()
    patient = PatientFactory(clinic=clinic, email="jane@example.com")
"""

import factory

from patients.models import Clinic, CustomerLink, LinkedVia, Patient


class ClinicFactory(factory.django.DjangoModelFactory):
    """Factory for creating Clinic instances."""

    class Meta:
        model = Clinic

    name = factory.Sequence(lambda n: f"Clinic {n}")
    stripe_account_id = None
    is_active = True


class PatientFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Patient instances.

    email_normalized is derived in Patient.save().
    """

    class Meta:
        model = Patient

    clinic = factory.SubFactory(ClinicFactory)
    email = factory.Sequence(lambda n: f"patient{n}@example.com")
    first_name = "Test"
    last_name = factory.Sequence(lambda n: f"Patient{n}")
    stripe_customer_id = None


class CustomerLinkFactory(factory.django.DjangoModelFactory):
    """Factory for creating CustomerLink instances."""

    class Meta:
        model = CustomerLink

    stripe_customer_id = factory.Sequence(lambda n: f"cus_test{n:06d}")
    patient = factory.SubFactory(PatientFactory)
    clinic = factory.LazyAttribute(lambda o: o.patient.clinic)
    linked_via = LinkedVia.DIRECT
