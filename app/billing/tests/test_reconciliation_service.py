"""
Tests for ReconciliationService.

Tests cover:
- Convergence: missing events are re-driven, recorded ones are counted
- Pagination of the Stripe listing
- Failures: dead-lettered events, unparseable events, listing outages
- The sweep lock
"""

from unittest.mock import patch

import pytest

from billing.adapters import EventPage
from billing.exceptions import StripeAPIUnavailableError
from billing.models import PaymentEvent, ReconciliationRun
from billing.services.reconciliation_service import (
    LOCK_KEY,
    LOCK_TTL_SECONDS,
    ReconciliationService,
)
from billing.state_machines import (
    EventSource,
    PaymentEventStatus,
    ReconciliationRunStatus,
    ReconciliationTrigger,
)
from billing.tests.factories import PaymentEventFactory
from billing.tests.payloads import payment_intent_payload
from core.circuit_breaker import CircuitBreaker


class FakeEventListing:
    """Serves pre-built pages and records the requested cursors."""

    def __init__(self, *pages, error=None):
        self.pages = list(pages)
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, **kwargs) -> EventPage:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.pages.pop(0)


class AlertRecorder:
    def __init__(self):
        self.alerts: list[tuple] = []

    def __call__(self, subject, message, context=None):
        self.alerts.append((subject, message, context))
        return True

    @property
    def subjects(self):
        return [a[0] for a in self.alerts]


def intent(n: int) -> dict:
    return payment_intent_payload(event_id=f"evt_listed{n:03d}", intent_id=f"pi_listed{n:03d}")


@pytest.fixture
def alerts():
    return AlertRecorder()


@pytest.fixture
def breaker():
    return CircuitBreaker(name="test-stripe-reconciliation", failure_threshold=1)


@pytest.fixture
def make_service(dispatcher, breaker, alerts):
    def _make(listing):
        return ReconciliationService(
            dispatcher=dispatcher, list_events=listing, breaker=breaker, alert=alerts
        )

    return _make


# =============================================================================
# Convergence
# =============================================================================


@pytest.mark.django_db
class TestConvergence:
    def test_ten_listed_seven_recorded_three_applied(self, make_service, patient, alerts):
        listed = [intent(n) for n in range(10)]
        for payload in listed[:7]:
            PaymentEventFactory(stripe_event_id=payload["id"], processed=True)
        listing = FakeEventListing(EventPage(events=listed))

        result = make_service(listing).run_sweep(window_hours=24)

        assert result.success
        run = result.data
        assert run.status == ReconciliationRunStatus.COMPLETED
        assert run.trigger == ReconciliationTrigger.SCHEDULE
        assert run.events_scanned == 10
        assert run.already_recorded == 7
        assert run.missing_found == 3
        assert run.applied == 3
        assert run.skipped == 0
        assert run.failed == 0
        assert run.completed_at is not None
        assert alerts.alerts == []

        redriven = PaymentEvent.objects.filter(source=EventSource.RECONCILIATION)
        assert redriven.count() == 3
        assert set(redriven.values_list("status", flat=True)) == {PaymentEventStatus.PROCESSED}

    def test_second_sweep_finds_nothing_missing(self, make_service, patient):
        listed = [intent(n) for n in range(3)]
        make_service(FakeEventListing(EventPage(events=listed))).run_sweep()

        run = make_service(FakeEventListing(EventPage(events=listed))).run_sweep().data

        assert run.already_recorded == 3
        assert run.missing_found == 0
        assert PaymentEvent.objects.count() == 3

    def test_unresolved_and_superseded_count_as_skipped(self, make_service, patient):
        listed = [
            payment_intent_payload(event_id="evt_stranger", customer="cus_stranger"),
            payment_intent_payload(event_id="evt_invoiced", invoice="in_001"),
        ]

        run = make_service(FakeEventListing(EventPage(events=listed))).run_sweep().data

        assert run.skipped == 2
        assert run.applied == 0

    def test_window_and_trigger_are_recorded(self, make_service, db):
        listing = FakeEventListing(EventPage(events=[]))

        run = make_service(listing).run_sweep(
            window_hours=6, trigger=ReconciliationTrigger.MANUAL
        ).data

        assert (run.window_end - run.window_start).total_seconds() == 6 * 3600
        assert run.trigger == ReconciliationTrigger.MANUAL
        assert listing.calls[0]["created_after"] == run.window_start
        assert listing.calls[0]["trace_id"] == str(run.id)
        assert "payment_intent.succeeded" in listing.calls[0]["types"]

    def test_default_window_from_settings(self, make_service, settings, db):
        settings.RECONCILIATION_WINDOW_HOURS = 12

        run = make_service(FakeEventListing(EventPage(events=[]))).run_sweep().data

        assert (run.window_end - run.window_start).total_seconds() == 12 * 3600


@pytest.mark.django_db
class TestPagination:
    def test_follows_cursor_until_exhausted(self, make_service, patient):
        listing = FakeEventListing(
            EventPage(events=[intent(1), intent(2)], has_more=True),
            EventPage(events=[intent(3)], has_more=False),
        )

        run = make_service(listing).run_sweep().data

        assert [c["starting_after"] for c in listing.calls] == [None, "evt_listed002"]
        assert run.events_scanned == 3
        assert run.applied == 3


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.django_db
class TestFailures:
    def test_dispatch_failures_are_counted_and_alerted(
        self, make_service, dispatcher, patient, alerts
    ):
        listing = FakeEventListing(EventPage(events=[intent(1), intent(2)]))

        with patch.object(
            dispatcher.refill_matcher, "auto_match", side_effect=RuntimeError("boom")
        ):
            run = make_service(listing).run_sweep().data

        assert run.status == ReconciliationRunStatus.COMPLETED
        assert run.failed == 2
        assert alerts.subjects == ["Reconciliation sweep had failures"]
        assert alerts.alerts[0][2]["failed"] == 2

    def test_unparseable_listed_event_is_a_failure(self, make_service, db):
        listing = FakeEventListing(
            EventPage(
                events=[
                    {"id": "evt_broken", "type": "payment_intent.succeeded", "data": {"object": {}}}
                ]
            )
        )

        run = make_service(listing).run_sweep().data

        assert run.missing_found == 1
        assert run.failed == 1
        assert PaymentEvent.objects.count() == 0

    def test_escaped_dispatch_error_is_a_failure(self, make_service, dispatcher, db):
        listing = FakeEventListing(EventPage(events=[intent(1)]))

        with patch.object(dispatcher, "dispatch", side_effect=RuntimeError("db gone")):
            run = make_service(listing).run_sweep().data

        assert run.failed == 1

    def test_listing_outage_fails_the_run(self, make_service, alerts, breaker, db):
        listing = FakeEventListing(error=StripeAPIUnavailableError("Stripe is down"))

        result = make_service(listing).run_sweep()

        assert result.success
        run = result.data
        assert run.status == ReconciliationRunStatus.FAILED
        assert "Stripe is down" in run.error_message
        assert alerts.subjects == ["Reconciliation sweep failed"]
        assert breaker.get_status()["state"] == "open"

    def test_open_circuit_skips_listing(self, make_service, breaker, alerts, db):
        breaker.record_failure()
        listing = FakeEventListing(EventPage(events=[intent(1)]))

        run = make_service(listing).run_sweep().data

        assert run.status == ReconciliationRunStatus.FAILED
        assert listing.calls == []
        assert alerts.subjects == ["Reconciliation sweep failed"]


# =============================================================================
# Lock
# =============================================================================


@pytest.mark.django_db
class TestLock:
    def test_held_lock_skips_sweep(self, make_service, lock_store):
        lock_store.set(f"lock:{LOCK_KEY}", "another-sweep", nx=True, ex=60)
        listing = FakeEventListing(EventPage(events=[intent(1)]))

        result = make_service(listing).run_sweep()

        assert not result.success
        assert result.error_code == "RECONCILIATION_LOCKED"
        assert result.details["status"] == ReconciliationRunStatus.SKIPPED
        assert listing.calls == []
        assert ReconciliationRun.objects.count() == 0
        assert lock_store.get(f"lock:{LOCK_KEY}") == "another-sweep"

    def test_lock_is_taken_with_ttl_and_released_after_sweep(self, make_service, lock_store):
        seen = {}

        def listing(**kwargs):
            seen["holder"] = lock_store.get(f"lock:{LOCK_KEY}")
            seen["ttl"] = lock_store.ttls.get(f"lock:{LOCK_KEY}")
            return EventPage(events=[])

        make_service(listing).run_sweep()

        assert seen["holder"] is not None
        assert seen["ttl"] == LOCK_TTL_SECONDS
        assert lock_store.get(f"lock:{LOCK_KEY}") is None

    def test_lock_taken_over_after_expiry_is_not_released(self, make_service, lock_store):
        def listing(**kwargs):
            # Our TTL lapsed and another sweep took the lock mid-run
            lock_store.values[f"lock:{LOCK_KEY}"] = "next-sweep"
            return EventPage(events=[])

        result = make_service(listing).run_sweep()

        assert result.success
        assert lock_store.get(f"lock:{LOCK_KEY}") == "next-sweep"

    def test_lock_is_released_when_sweep_raises(self, make_service, lock_store):
        with (
            patch.object(ReconciliationService, "_sweep", side_effect=RuntimeError("boom")),
            pytest.raises(RuntimeError),
        ):
            make_service(FakeEventListing()).run_sweep()

        assert lock_store.get(f"lock:{LOCK_KEY}") is None
