"""
Tests for DeadLetterReplayService.

Tests cover:
- Successful replay resolves the entry
- Replays of events another path already processed
- Failed and unparseable replays
- Batch selection for the periodic replay
"""

from unittest.mock import patch

import pytest
from django.utils import timezone

from billing.events import parse_event
from billing.models import DeadLetterEntry, PaymentEvent
from billing.services import DeadLetterReplayService
from billing.state_machines import EventSource, PaymentEventStatus
from billing.tests.factories import DeadLetterEntryFactory, PaymentEventFactory
from billing.tests.payloads import payment_intent_payload


@pytest.fixture
def replay_service(dispatcher):
    return DeadLetterReplayService(dispatcher=dispatcher)


def fresh(entry):
    return DeadLetterEntry.objects.get(pk=entry.pk)


@pytest.mark.django_db
class TestReplay:
    def test_successful_replay_resolves_entry(self, replay_service, patient):
        entry = DeadLetterEntryFactory(source_event_id="evt_intent_001")

        result = replay_service.replay(entry)

        assert result.success
        assert result.data.applied is True
        assert fresh(entry).resolved_at is not None
        record = PaymentEvent.objects.get(stripe_event_id="evt_intent_001")
        assert record.status == PaymentEventStatus.PROCESSED
        assert record.source == EventSource.REPLAY

    def test_already_processed_event_resolves_entry(self, replay_service, db):
        entry = DeadLetterEntryFactory(source_event_id="evt_intent_001")
        PaymentEventFactory(stripe_event_id="evt_intent_001", processed=True)

        result = replay_service.replay(entry)

        assert result.success
        assert result.data.duplicate is True
        assert fresh(entry).resolved_at is not None

    def test_resolved_entry_is_refused(self, replay_service, db):
        entry = DeadLetterEntryFactory(resolved_at=timezone.now())

        result = replay_service.replay(entry)

        assert not result.success
        assert result.error_code == "DEAD_LETTER_RESOLVED"

    def test_failed_replay_counts_an_attempt(self, replay_service, dispatcher, patient):
        with patch.object(
            dispatcher.commission_engine, "attribute", side_effect=RuntimeError("still broken")
        ):
            first = dispatcher.dispatch(parse_event(payment_intent_payload()))
            entry = DeadLetterEntry.objects.get()

            result = replay_service.replay(entry)

        assert first.failed
        assert not result.success
        assert result.error == "still broken"
        assert result.error_code == "RUNTIMEERROR"
        entry = fresh(entry)
        assert entry.retry_count == 1
        assert entry.resolved_at is None

    def test_unparseable_payload_needs_manual_review(self, replay_service, db):
        entry = DeadLetterEntryFactory(payload={"id": "evt_broken"})

        result = replay_service.replay(entry)

        assert not result.success
        assert result.error_code == "EVENT_PARSE_ERROR"
        entry = fresh(entry)
        assert entry.requires_manual_review is True
        assert entry.error_code == "EVENT_PARSE_ERROR"


@pytest.mark.django_db
class TestReplayPending:
    def test_replays_only_eligible_entries(self, replay_service, patient, settings):
        settings.DLQ_MAX_REPLAY_ATTEMPTS = 5
        eligible = DeadLetterEntryFactory(source_event_id="evt_intent_001")
        DeadLetterEntryFactory(requires_manual_review=True)
        DeadLetterEntryFactory(retry_count=5)
        DeadLetterEntryFactory(resolved_at=timezone.now())

        summary = replay_service.replay_pending()

        assert summary == {"replayed": 1, "resolved": 1, "failed": 0}
        assert fresh(eligible).resolved_at is not None

    def test_counts_failures(self, replay_service, dispatcher, patient):
        DeadLetterEntryFactory(source_event_id="evt_intent_001")

        with patch.object(
            dispatcher.refill_matcher, "auto_match", side_effect=RuntimeError("boom")
        ):
            summary = replay_service.replay_pending()

        assert summary == {"replayed": 1, "resolved": 0, "failed": 1}

    def test_respects_limit(self, replay_service, db):
        for n in range(3):
            DeadLetterEntryFactory(payload={"id": f"evt_bad{n}"})

        summary = replay_service.replay_pending(limit=2)

        assert summary["replayed"] == 2
