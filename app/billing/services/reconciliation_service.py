"""
Reconciliation sweep for payment events missed by the webhook path.

Webhooks are at-least-once but not guaranteed: an outage, a deploy or a
dead-lettered failure can leave a Stripe payment without local effects.
The sweep lists recent payment events from Stripe and pushes every one
that is not processed locally through the same dispatcher the webhook
uses. Natural keys and the dispatcher's processed check make it safe to
run alongside live webhooks and to run repeatedly.

Flow:
    1. Take the sweep lock (Redis, non-blocking); a held lock means ``skipped``
    2. Create a ReconciliationRun
    3. Page through Stripe events in the window under the Stripe breaker
    4. Split into already-processed and missing
    5. Dispatch the missing ones (source=reconciliation)
    6. Complete the run; alert when anything failed

Usage:
    from billing.services import ReconciliationService

    result = ReconciliationService().run_sweep(window_hours=48)
    if result.success:
        run = result.data
        print(run.missing_found, run.applied)
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from billing.adapters import StripeAdapter, stripe_circuit_breaker
from billing.dispatcher import EventDispatcher
from billing.events import PAYMENT_SUCCESS_TYPES, parse_event
from billing.exceptions import EventParseError, ReconciliationLockError, StripeError
from billing.models import PaymentEvent, ReconciliationRun
from billing.state_machines import (
    EventSource,
    PaymentEventStatus,
    ReconciliationRunStatus,
    ReconciliationTrigger,
)
from core.alerts import send_alert
from core.circuit_breaker import CircuitOpenError
from core.exceptions import LockAcquisitionError
from core.locks import DistributedLock
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from datetime import datetime
    from typing import Any

    from billing.adapters import EventPage
    from core.circuit_breaker import CircuitBreaker


LOCK_KEY = "billing:reconciliation:lock"
LOCK_TTL_SECONDS = 15 * 60
PAGE_SIZE = 100
MAX_PAGES = 100


class ReconciliationService(BaseService):
    """
    Re-drive Stripe payment events that never reached PROCESSED.

    Args:
        dispatcher: Event dispatcher (default: EventDispatcher())
        list_events: Stripe event listing (default: StripeAdapter.list_events)
        breaker: Stripe circuit breaker (default: stripe_circuit_breaker())
        alert: Alert sender (default: core.alerts.send_alert)
    """

    def __init__(
        self,
        dispatcher: EventDispatcher | None = None,
        list_events: Callable[..., EventPage] | None = None,
        breaker: CircuitBreaker | None = None,
        alert: Callable[..., Any] | None = None,
    ):
        self.dispatcher = dispatcher or EventDispatcher()
        self.list_events = list_events or StripeAdapter.list_events
        self.breaker = breaker or stripe_circuit_breaker()
        self.alert = alert or send_alert

    def run_sweep(
        self,
        window_hours: int | None = None,
        trigger: str = ReconciliationTrigger.SCHEDULE,
    ) -> ServiceResult[ReconciliationRun]:
        """
        Run one sweep.

        Args:
            window_hours: How far back to list events (default:
                settings.RECONCILIATION_WINDOW_HOURS)
            trigger: What started the sweep

        Returns:
            ServiceResult with the ReconciliationRun (completed or failed),
            or a failure with error_code RECONCILIATION_LOCKED and
            ``details["status"] == "skipped"`` when another sweep is running
        """
        if window_hours is None:
            window_hours = settings.RECONCILIATION_WINDOW_HOURS

        try:
            with self.lock():
                run = self._sweep(window_hours, trigger)
        except ReconciliationLockError as e:
            self.get_logger().warning(
                "Reconciliation sweep skipped: another sweep is running",
                extra={"trigger": str(trigger)},
            )
            return ServiceResult.failure(
                e.message,
                error_code=e.error_code,
                details={"status": ReconciliationRunStatus.SKIPPED.value},
            )
        return ServiceResult.success(run)

    @contextmanager
    def lock(self) -> Generator[None, None, None]:
        """
        Hold the sweep lock for the enclosed block.

        Raises:
            ReconciliationLockError: Another sweep holds the lock
        """
        lock = DistributedLock(LOCK_KEY, ttl=LOCK_TTL_SECONDS, blocking=False)
        try:
            lock.acquire()
        except LockAcquisitionError as e:
            raise ReconciliationLockError(
                "Another reconciliation sweep is in progress",
                details={"lock_key": LOCK_KEY},
            ) from e
        try:
            yield
        finally:
            lock.release()

    # =========================================================================
    # Internals
    # =========================================================================

    def _sweep(self, window_hours: int, trigger: str) -> ReconciliationRun:
        logger = self.get_logger()
        now = timezone.now()
        run = ReconciliationRun.objects.create(
            started_at=now,
            trigger=trigger,
            window_start=now - timedelta(hours=window_hours),
            window_end=now,
        )
        log_context = {"run_id": str(run.id), "window_hours": window_hours}
        logger.info("Starting reconciliation sweep", extra=log_context)

        try:
            payloads = self._list_window(run.window_start, trace_id=str(run.id))
        except (CircuitOpenError, StripeError) as e:
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.completed_at = timezone.now()
            run.save(update_fields=["status", "error_message", "completed_at", "updated_at"])
            logger.error(
                "Reconciliation sweep failed listing events",
                extra={**log_context, "error_code": e.error_code},
            )
            self.alert(
                "Reconciliation sweep failed",
                "Listing Stripe events failed; missed payments were not re-driven.",
                {**log_context, "error_code": e.error_code, "error": str(e)},
            )
            return run

        event_ids = [p.get("id") for p in payloads if p.get("id")]
        processed = set(
            PaymentEvent.objects.filter(
                stripe_event_id__in=event_ids, status=PaymentEventStatus.PROCESSED
            ).values_list("stripe_event_id", flat=True)
        )
        missing = [p for p in payloads if p.get("id") not in processed]

        run.events_scanned = len(payloads)
        run.already_recorded = len(payloads) - len(missing)
        run.missing_found = len(missing)

        for payload in missing:
            self._redrive(payload, run)

        run.status = ReconciliationRunStatus.COMPLETED
        run.completed_at = timezone.now()
        run.save()

        logger.info(
            "Reconciliation sweep completed",
            extra={
                **log_context,
                "events_scanned": run.events_scanned,
                "missing_found": run.missing_found,
                "applied_count": run.applied,
                "skipped_count": run.skipped,
                "failed_count": run.failed,
            },
        )
        if run.failed:
            self.alert(
                "Reconciliation sweep had failures",
                f"{run.failed} of {run.missing_found} missing events failed to apply "
                "and were dead-lettered.",
                {**log_context, "failed": run.failed, "missing_found": run.missing_found},
            )
        return run

    def _list_window(self, created_after: datetime, trace_id: str) -> list[dict]:
        payloads: list[dict] = []
        cursor = None
        for _ in range(MAX_PAGES):
            with self.breaker.call():
                page = self.list_events(
                    types=list(PAYMENT_SUCCESS_TYPES),
                    created_after=created_after,
                    starting_after=cursor,
                    limit=PAGE_SIZE,
                    trace_id=trace_id,
                )
            payloads.extend(page.events)
            if not page.has_more or not page.last_id:
                break
            cursor = page.last_id
        return payloads

    def _redrive(self, payload: dict, run: ReconciliationRun) -> None:
        try:
            event = parse_event(payload)
        except EventParseError as e:
            run.failed += 1
            self.get_logger().error(
                "Listed event could not be parsed",
                extra={
                    "run_id": str(run.id),
                    "stripe_event_id": payload.get("id"),
                    "error_code": e.error_code,
                },
            )
            return

        try:
            outcome = self.dispatcher.dispatch(event, source=EventSource.RECONCILIATION)
        except Exception:
            run.failed += 1
            self.get_logger().exception(
                "Dispatcher could not record a failed event",
                extra={"run_id": str(run.id), "stripe_event_id": event.event_id},
            )
            return

        if outcome.failed:
            run.failed += 1
        elif outcome.applied and not outcome.skipped:
            run.applied += 1
        else:
            # Deliberate skips and events processed concurrently by a webhook
            run.skipped += 1
