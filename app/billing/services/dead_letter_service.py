"""
Dead-letter replay.

Replays unresolved DeadLetterEntry payloads through the dispatcher with
source=replay. The dispatcher owns the entry's bookkeeping: a successful
dispatch resolves every open entry for the event, a failed one bumps
retry_count and flags the entry for manual review once
DLQ_MAX_REPLAY_ATTEMPTS is reached.

Usage:
    from billing.services import DeadLetterReplayService

    summary = DeadLetterReplayService().replay_pending()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from billing.dispatcher import DispatchOutcome, EventDispatcher
from billing.events import parse_event
from billing.exceptions import EventParseError
from billing.models import DeadLetterEntry
from billing.state_machines import EventSource
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from typing import Any

REPLAY_BATCH_SIZE = 100


class DeadLetterReplayService(BaseService):
    """
    Re-drive dead-lettered events.

    Args:
        dispatcher: Event dispatcher (default: EventDispatcher())
    """

    def __init__(self, dispatcher: EventDispatcher | None = None):
        self.dispatcher = dispatcher or EventDispatcher()

    def replay(self, entry: DeadLetterEntry) -> ServiceResult[DispatchOutcome]:
        """
        Replay one entry.

        Returns:
            Success with the DispatchOutcome when the event is now processed
            (by this replay or earlier); failure otherwise
        """
        logger = self.get_logger()
        log_context = {
            "dead_letter_id": str(entry.pk),
            "stripe_event_id": entry.source_event_id,
        }

        if entry.resolved_at is not None:
            return ServiceResult.failure(
                "Dead-letter entry is already resolved",
                error_code="DEAD_LETTER_RESOLVED",
                details=log_context,
            )

        try:
            event = parse_event(entry.payload)
        except EventParseError as e:
            DeadLetterEntry.objects.filter(pk=entry.pk).update(
                requires_manual_review=True,
                error_message=e.message,
                error_code=e.error_code,
                last_attempt_at=timezone.now(),
                updated_at=timezone.now(),
            )
            logger.error(
                "Dead-letter payload cannot be parsed; flagged for review",
                extra=log_context,
            )
            return ServiceResult.from_exception(e)

        outcome = self.dispatcher.dispatch(event, source=EventSource.REPLAY)
        if outcome.failed:
            logger.warning(
                f"Dead-letter replay failed: {outcome.error_code}",
                extra={**log_context, "error_code": outcome.error_code},
            )
            return ServiceResult.failure(
                outcome.error or "Replay failed",
                error_code=outcome.error_code or "REPLAY_FAILED",
                details=outcome.details,
            )

        # A duplicate outcome means another path already processed the event
        now = timezone.now()
        DeadLetterEntry.objects.filter(pk=entry.pk, resolved_at__isnull=True).update(
            resolved_at=now, updated_at=now
        )
        logger.info("Dead-letter entry resolved", extra=log_context)
        return ServiceResult.success(outcome)

    def replay_pending(self, limit: int = REPLAY_BATCH_SIZE) -> dict[str, Any]:
        """
        Replay unresolved entries that still have attempts left.

        Returns:
            Counts: replayed, resolved, failed
        """
        entries = list(
            DeadLetterEntry.objects.filter(
                resolved_at__isnull=True,
                requires_manual_review=False,
                retry_count__lt=settings.DLQ_MAX_REPLAY_ATTEMPTS,
            ).order_by("created_at")[:limit]
        )

        resolved = failed = 0
        for entry in entries:
            if self.replay(entry):
                resolved += 1
            else:
                failed += 1

        summary = {"replayed": len(entries), "resolved": resolved, "failed": failed}
        if entries:
            self.get_logger().info("Dead-letter replay finished", extra=summary)
        return summary
