"""
Dead-letter queue for events whose effects could not be applied.

An entry is written when the dispatcher's effect transaction fails. Entries
are append-only: replay resolves them, nothing deletes them. There is at
most one unresolved entry per Stripe event; later failures of the same
event update it.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class DeadLetterEntry(UUIDPrimaryKeyMixin, BaseModel):
    """
    A failed event awaiting replay or manual review.

    Fields:
        source_event_id: Stripe Event ID of the failed event
        event_type: Stripe event type
        error_message, error_code: The last failure
        payload: Raw payload, replayed through the dispatcher
        retry_count: Failed attempts after the first
        requires_manual_review: Set once retries are exhausted; replay
            stops picking the entry up
        last_attempt_at: Time of the last failed attempt
        resolved_at: When a later attempt succeeded
    """

    source_event_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe Event ID (evt_xxx)",
    )

    event_type = models.CharField(max_length=100, db_index=True)

    error_message = models.TextField(blank=True, default="")

    error_code = models.CharField(max_length=100, blank=True, default="")

    payload = models.JSONField(default=dict)

    retry_count = models.PositiveIntegerField(default=0)

    requires_manual_review = models.BooleanField(default=False, db_index=True)

    last_attempt_at = models.DateTimeField(null=True, blank=True)

    resolved_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dead Letter Entry"
        verbose_name_plural = "Dead Letter Entries"
        indexes = [
            models.Index(
                fields=["resolved_at", "requires_manual_review"],
                name="dlq_open_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["source_event_id"],
                condition=Q(resolved_at__isnull=True),
                name="dlq_one_open_entry_per_event",
            ),
        ]

    def __str__(self) -> str:
        state = "resolved" if self.resolved_at else "open"
        return f"DeadLetterEntry({self.source_event_id}, {self.error_code}, {state})"

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
