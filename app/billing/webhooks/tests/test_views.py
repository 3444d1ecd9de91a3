"""
Tests for the Stripe webhook view.

Requests are signed with the test webhook secret, so verification runs
through the Stripe SDK rather than a patch.

Tests cover:
- Signature verification
- Dispatch and idempotent redelivery
- Failures acknowledged with 200 (dead-lettered or left to reconciliation)
"""

import json
from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.urls import reverse

from billing.models import DeadLetterEntry, PaymentEvent
from billing.state_machines import PaymentEventStatus
from billing.tests.payloads import payment_intent_payload, signed_header, subscription_payload


# =============================================================================
# Setup
# =============================================================================


@pytest.fixture
def webhook_url():
    return reverse("billing:stripe-webhook")


@pytest.fixture
def post_event(client, webhook_url):
    """POST a payload with a valid signature (or the given header)."""

    def _post(payload, signature=None):
        body = json.dumps(payload)
        headers = {}
        if signature is not False:
            headers["HTTP_STRIPE_SIGNATURE"] = signature or signed_header(body)
        return client.post(webhook_url, data=body, content_type="application/json", **headers)

    return _post


# =============================================================================
# Signature Verification Tests
# =============================================================================


@pytest.mark.django_db
class TestSignature:
    def test_missing_signature_returns_400(self, post_event):
        response = post_event(payment_intent_payload(), signature=False)

        assert response.status_code == 400
        assert b"Missing signature" in response.content
        assert PaymentEvent.objects.count() == 0

    def test_invalid_signature_returns_400(self, post_event):
        body = json.dumps(payment_intent_payload())

        response = post_event(
            payment_intent_payload(), signature=signed_header(body, secret="whsec_wrong")
        )

        assert response.status_code == 400
        assert b"Invalid signature" in response.content
        assert PaymentEvent.objects.count() == 0

    def test_get_is_not_allowed(self, client, webhook_url):
        assert client.get(webhook_url).status_code == 405


# =============================================================================
# Dispatch Tests
# =============================================================================


@pytest.mark.django_db
class TestDispatch:
    def test_valid_event_is_applied(self, post_event, patient):
        response = post_event(payment_intent_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["event_id"] == "evt_intent_001"
        assert body["applied"] is True
        assert body["details"]["patient_id"] == patient.pk

        record = PaymentEvent.objects.get()
        assert record.status == PaymentEventStatus.PROCESSED

    def test_redelivery_is_acknowledged_as_duplicate(self, post_event, patient):
        post_event(payment_intent_payload())

        response = post_event(payment_intent_payload())

        assert response.status_code == 200
        assert response.json()["applied"] is False
        assert response.json()["details"] == {"duplicate": True}
        assert PaymentEvent.objects.count() == 1

    def test_unparseable_event_is_acknowledged(self, post_event):
        response = post_event({"id": "evt_odd", "type": "charge.succeeded", "data": {}})

        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is False
        assert body["details"]["error_code"] == "EVENT_PARSE_ERROR"
        assert PaymentEvent.objects.count() == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"id": "evt_list_data", "type": "payment_intent.succeeded", "data": ["x"]},
            payment_intent_payload(event_id="evt_list_meta", metadata=["a"]),
        ],
        ids=["data-list", "metadata-list"],
    )
    def test_signed_body_with_non_object_fields_is_acknowledged(self, post_event, payload):
        response = post_event(payload)

        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is False
        assert body["details"]["error_code"] == "EVENT_PARSE_ERROR"
        assert PaymentEvent.objects.count() == 0


# =============================================================================
# Failure Tests
# =============================================================================


@pytest.mark.django_db
class TestFailures:
    def test_attribution_error_is_dead_lettered_with_200(self, post_event, referral):
        with patch(
            "affiliates.services.commission_engine.CommissionEngine.attribute",
            side_effect=RuntimeError("attribution exploded"),
        ):
            response = post_event(payment_intent_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is False
        assert body["details"]["error_code"] == "RUNTIMEERROR"
        assert DeadLetterEntry.objects.count() == 1
        assert PaymentEvent.objects.get().status == PaymentEventStatus.FAILED

    def test_unrecordable_payment_failure_alerts(self, post_event, db):
        with (
            patch(
                "billing.webhooks.views.EventDispatcher.dispatch",
                side_effect=DatabaseError("connection lost"),
            ),
            patch("billing.webhooks.views.send_alert") as mock_alert,
        ):
            response = post_event(payment_intent_payload())

        assert response.status_code == 200
        assert response.json()["details"] == {"error": "internal error"}
        mock_alert.assert_called_once()
        assert mock_alert.call_args.args[2]["stripe_event_id"] == "evt_intent_001"

    def test_unrecordable_non_payment_failure_does_not_alert(self, post_event, db):
        with (
            patch(
                "billing.webhooks.views.EventDispatcher.dispatch",
                side_effect=DatabaseError("connection lost"),
            ),
            patch("billing.webhooks.views.send_alert") as mock_alert,
        ):
            response = post_event(subscription_payload())

        assert response.status_code == 200
        mock_alert.assert_not_called()
