"""
Patient/customer resolution.

Maps a Stripe customer reference to a local patient.

Resolution order:
    1. An existing CustomerLink for the customer
    2. A Patient whose stripe_customer_id is the customer (the link is
       written so the next lookup takes step 1)
    3. Email fallback, only when a clinic is known: the event's email, or
       the customer's email fetched from Stripe under the circuit breaker,
       matched against patients of that clinic

A miss is an expected outcome and returns None. Callers log it and skip.

Usage:
    from patients.services import PatientResolver

    resolved = PatientResolver().resolve("cus_123", clinic_hint=clinic)
    if resolved is None:
        return skipped("unresolved customer")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from billing.adapters import StripeAdapter, stripe_circuit_breaker
from billing.exceptions import StripeError
from core.circuit_breaker import CircuitOpenError
from core.db import insert_or_get
from core.helpers import normalize_email
from core.services import BaseService
from patients.models import Clinic, CustomerLink, LinkedVia, Patient

if TYPE_CHECKING:
    from collections.abc import Callable

    from billing.adapters import CustomerResult
    from core.circuit_breaker import CircuitBreaker


@dataclass(frozen=True)
class ResolvedPatient:
    """
    A patient resolved from a Stripe customer.

    Attributes:
        patient: The matched patient
        clinic: The patient's clinic
        linked_via: How the customer is linked (LinkedVia value)
        link_created: True if this call wrote the CustomerLink
    """

    patient: Patient
    clinic: Clinic
    linked_via: str
    link_created: bool = False


class PatientResolver(BaseService):
    """
    Resolve Stripe customers to patients.

    Dependencies are injected so tests can pass a fake customer lookup and
    a breaker with a private name.

    Args:
        customer_lookup: Callable returning a CustomerResult for a customer
            id (default: StripeAdapter.retrieve_customer)
        breaker: Circuit breaker guarding the lookup (default: Stripe breaker)
    """

    def __init__(
        self,
        customer_lookup: Callable[[str], CustomerResult] | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.customer_lookup = customer_lookup or StripeAdapter.retrieve_customer
        self.breaker = breaker or stripe_circuit_breaker()

    def resolve(
        self,
        customer_ref: str | None,
        clinic_hint: Clinic | None = None,
        email_hint: str | None = None,
    ) -> ResolvedPatient | None:
        """
        Resolve a Stripe customer reference to a patient.

        Resolving the same customer twice returns the same patient and
        writes no second link.

        Args:
            customer_ref: Stripe Customer ID (cus_xxx)
            clinic_hint: Clinic the event belongs to, if known
            email_hint: Email carried by the event, if any

        Returns:
            ResolvedPatient, or None when no patient matches
        """
        logger = self.get_logger()

        if not customer_ref:
            return None

        link = (
            CustomerLink.objects.select_related("patient", "clinic")
            .filter(stripe_customer_id=customer_ref)
            .first()
        )
        if link is not None:
            return ResolvedPatient(
                patient=link.patient,
                clinic=link.clinic,
                linked_via=link.linked_via,
            )

        direct = Patient.objects.select_related("clinic").filter(
            stripe_customer_id=customer_ref
        )
        if clinic_hint is not None:
            direct = direct.filter(clinic=clinic_hint)
        patient = direct.order_by("created_at").first()
        if patient is not None:
            return self._link(customer_ref, patient, LinkedVia.DIRECT)

        if clinic_hint is None:
            logger.info(
                "Customer not linked and no clinic for email fallback",
                extra={"customer_id": customer_ref},
            )
            return None

        email = normalize_email(email_hint) or self._fetch_email(customer_ref)
        if not email:
            return None

        patient = (
            Patient.objects.select_related("clinic")
            .filter(clinic=clinic_hint, email_normalized=email)
            .order_by("created_at")
            .first()
        )
        if patient is None:
            logger.info(
                "No patient matches customer email in clinic",
                extra={"customer_id": customer_ref, "clinic_id": clinic_hint.pk},
            )
            return None

        resolved = self._link(customer_ref, patient, LinkedVia.EMAIL_FALLBACK)
        # Mirror the customer id onto patients that never had one
        Patient.objects.filter(pk=patient.pk, stripe_customer_id__isnull=True).update(
            stripe_customer_id=customer_ref
        )
        return resolved

    # =========================================================================
    # Internals
    # =========================================================================

    def _link(
        self, customer_ref: str, patient: Patient, linked_via: str
    ) -> ResolvedPatient:
        link, created = insert_or_get(
            CustomerLink,
            stripe_customer_id=customer_ref,
            defaults={
                "patient": patient,
                "clinic_id": patient.clinic_id,
                "linked_via": linked_via,
            },
        )
        if created:
            self.get_logger().info(
                "Linked Stripe customer to patient",
                extra={
                    "customer_id": customer_ref,
                    "patient_id": patient.pk,
                    "linked_via": linked_via,
                },
            )
            return ResolvedPatient(
                patient=patient,
                clinic=patient.clinic,
                linked_via=linked_via,
                link_created=True,
            )

        # Lost the race: the stored link wins
        link = CustomerLink.objects.select_related("patient", "clinic").get(pk=link.pk)
        return ResolvedPatient(
            patient=link.patient, clinic=link.clinic, linked_via=link.linked_via
        )

    def _fetch_email(self, customer_ref: str) -> str | None:
        """Customer email from Stripe, or None if unavailable for any reason."""
        try:
            with self.breaker.call():
                customer = self.customer_lookup(customer_ref)
        except (CircuitOpenError, StripeError) as e:
            self.get_logger().warning(
                f"Customer email lookup failed: {e.error_code}",
                extra={"customer_id": customer_ref, "error_code": e.error_code},
            )
            return None

        if customer.deleted:
            return None
        return normalize_email(customer.email)
