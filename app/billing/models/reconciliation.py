"""
ReconciliationRun: one execution of the missed-event sweep.

Usage:
    from billing.models import ReconciliationRun

    last = ReconciliationRun.objects.order_by("-started_at").first()
"""

from __future__ import annotations

from django.db import models

from billing.state_machines import ReconciliationRunStatus, ReconciliationTrigger
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    Report of a reconciliation sweep.

    Counters:
        events_scanned: Events listed from Stripe in the window
        already_recorded: Of those, events processed locally
        missing_found: Events not processed locally
        applied, skipped, failed: Dispatch outcomes of the missing events
    """

    started_at = models.DateTimeField(db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
    )

    trigger = models.CharField(
        max_length=20,
        choices=ReconciliationTrigger.choices,
        default=ReconciliationTrigger.SCHEDULE,
    )

    window_start = models.DateTimeField()
    window_end = models.DateTimeField()

    events_scanned = models.PositiveIntegerField(default=0)
    already_recorded = models.PositiveIntegerField(default=0)
    missing_found = models.PositiveIntegerField(default=0)
    applied = models.PositiveIntegerField(default=0)
    skipped = models.PositiveIntegerField(default=0)
    failed = models.PositiveIntegerField(default=0)

    error_message = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-started_at"]
        verbose_name = "Reconciliation Run"
        verbose_name_plural = "Reconciliation Runs"

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status})"

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def as_report(self) -> dict:
        """JSON-safe summary returned by the cron trigger."""
        return {
            "run_id": str(self.id),
            "status": self.status,
            "trigger": self.trigger,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "events_scanned": self.events_scanned,
            "already_recorded": self.already_recorded,
            "missing_found": self.missing_found,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "error_message": self.error_message,
        }
