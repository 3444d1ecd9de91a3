"""
Refill payment matching.

Usage:
    from refills.services import RefillAutoMatcher

    entry_ids = RefillAutoMatcher().auto_match(
        patient, clinic, payment_reference="pi_123", amount_cents=4900
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService
from refills.models import RefillQueueEntry, RefillStatus

if TYPE_CHECKING:
    from uuid import UUID

    from patients.models import Clinic, Patient


class RefillAutoMatcher(BaseService):
    """Mark a patient's oldest payable refill as paid."""

    def auto_match(
        self,
        patient: Patient,
        clinic: Clinic,
        payment_reference: str,
        amount_cents: int | None = None,
        invoice_reference: str | None = None,
    ) -> list[UUID]:
        """
        Match a payment to at most one pending refill.

        Replays return the entry already matched to the payment. Candidates
        are the patient's unverified pending_payment entries in the clinic,
        oldest next_refill_date first; the first one whose expected amount
        the payment covers is flipped by a conditional update. Losing that
        update to a concurrent match moves on to the next candidate.

        The unique payment_reference constraint settles two reports of the
        same payment matched concurrently: the loser's update fails and it
        returns the winner's entry.

        Args:
            patient: Paying patient
            clinic: Clinic the payment belongs to
            payment_reference: Canonical payment id
            amount_cents: Payment amount; None only matches entries without
                an expected amount
            invoice_reference: Invoice id, if the payment came from one

        Returns:
            List with the matched entry id, or empty
        """
        logger = self.get_logger()

        already = RefillQueueEntry.objects.filter(
            payment_reference=payment_reference
        ).values_list("id", flat=True)
        if already:
            return list(already)

        candidates = RefillQueueEntry.objects.filter(
            patient=patient,
            clinic=clinic,
            status=RefillStatus.PENDING_PAYMENT,
            payment_verified=False,
        )
        if amount_cents is None:
            candidates = candidates.filter(expected_amount_cents__isnull=True)
        else:
            candidates = candidates.filter(
                Q(expected_amount_cents__isnull=True)
                | Q(expected_amount_cents__lte=amount_cents)
            )

        for entry_id in candidates.order_by("next_refill_date", "created_at").values_list(
            "id", flat=True
        ):
            now = timezone.now()
            try:
                with transaction.atomic():
                    updated = RefillQueueEntry.objects.filter(
                        pk=entry_id,
                        status=RefillStatus.PENDING_PAYMENT,
                        payment_verified=False,
                    ).update(
                        status=RefillStatus.PAYMENT_VERIFIED,
                        payment_verified=True,
                        payment_verified_at=now,
                        payment_reference=payment_reference,
                        invoice_reference=invoice_reference or "",
                        updated_at=now,
                    )
            except IntegrityError:
                holder = list(
                    RefillQueueEntry.objects.filter(
                        payment_reference=payment_reference
                    ).values_list("id", flat=True)
                )
                logger.info(
                    "Payment already verified another refill",
                    extra={
                        "patient_id": patient.pk,
                        "payment_reference": payment_reference,
                        "refill_ids": [str(pk) for pk in holder],
                    },
                )
                return holder
            if updated:
                logger.info(
                    "Refill payment verified",
                    extra={
                        "refill_id": str(entry_id),
                        "patient_id": patient.pk,
                        "payment_reference": payment_reference,
                    },
                )
                return [entry_id]

        return []
