"""
Celery tasks for billing.

Periodic tasks (registered with django-celery-beat by a data migration):
- run_reconciliation_sweep: hourly, re-drive payment events missed by webhooks
- replay_dead_letters: every 15 minutes, replay the dead-letter queue

On demand:
- replay_dead_letter: replay one entry (the ops API queues this)

Usage:
    from billing.tasks import replay_dead_letter

    replay_dead_letter.delay(str(entry.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from billing.models import DeadLetterEntry
from billing.services import DeadLetterReplayService, ReconciliationService
from billing.state_machines import ReconciliationTrigger

logger = logging.getLogger(__name__)


# =============================================================================
# Reconciliation
# =============================================================================


@shared_task(acks_late=True)
def run_reconciliation_sweep(
    window_hours: int | None = None, trigger: str = ReconciliationTrigger.SCHEDULE
) -> dict:
    """
    Run a reconciliation sweep.

    Args:
        window_hours: Listing window (default: RECONCILIATION_WINDOW_HOURS)
        trigger: What started the sweep

    Returns:
        The run report, or {"status": "skipped"} if a sweep is running
    """
    result = ReconciliationService().run_sweep(window_hours=window_hours, trigger=trigger)
    if not result.success:
        return {"status": result.details.get("status", "failed"), "error": result.error}
    return result.data.as_report()


# =============================================================================
# Dead-Letter Replay
# =============================================================================


@shared_task(acks_late=True)
def replay_dead_letters() -> dict:
    """
    Replay unresolved dead-letter entries with attempts left.

    Returns:
        Counts of replayed, resolved and failed entries
    """
    return DeadLetterReplayService().replay_pending()


@shared_task(acks_late=True)
def replay_dead_letter(entry_id: str) -> dict:
    """
    Replay a single dead-letter entry.

    Args:
        entry_id: UUID of the DeadLetterEntry

    Returns:
        Dict with the replay status
    """
    if isinstance(entry_id, str):
        entry_id = UUID(entry_id)

    try:
        entry = DeadLetterEntry.objects.get(id=entry_id)
    except DeadLetterEntry.DoesNotExist:
        logger.error(
            "DeadLetterEntry not found",
            extra={"dead_letter_id": str(entry_id)},
        )
        return {"status": "not_found", "dead_letter_id": str(entry_id)}

    result = DeadLetterReplayService().replay(entry)
    if result.success:
        return {
            "status": "resolved",
            "dead_letter_id": str(entry_id),
            "applied": result.data.applied,
        }
    return {
        "status": "failed",
        "dead_letter_id": str(entry_id),
        "error": result.error,
        "error_code": result.error_code,
    }
