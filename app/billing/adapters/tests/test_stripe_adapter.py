"""
Tests for the Stripe adapter.

Tests cover:
- Customer retrieval, including deleted customers
- Event listing and its pagination cursor
- Webhook signature verification against real signatures
- Translation of Stripe SDK errors
"""

import json
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe

from billing.adapters import StripeAdapter, stripe_circuit_breaker
from billing.adapters.stripe_adapter import EventPage
from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSignatureError,
)
from billing.tests.payloads import payment_intent_payload, signed_header


# =============================================================================
# Customers
# =============================================================================


class TestRetrieveCustomer:
    def test_returns_customer_result(self):
        customer = MagicMock(id="cus_001", email="jane@example.com", deleted=False)
        customer.name = "Jane Doe"
        customer.metadata = {"source": "intake"}

        with patch("billing.adapters.stripe_adapter.stripe.Customer.retrieve") as mock:
            mock.return_value = customer
            result = StripeAdapter.retrieve_customer("cus_001")

        mock.assert_called_once_with("cus_001")
        assert result.id == "cus_001"
        assert result.email == "jane@example.com"
        assert result.name == "Jane Doe"
        assert result.deleted is False
        assert result.metadata == {"source": "intake"}

    def test_deleted_customer(self):
        customer = MagicMock(id="cus_gone", email=None, deleted=True, metadata=None)

        with patch("billing.adapters.stripe_adapter.stripe.Customer.retrieve") as mock:
            mock.return_value = customer
            result = StripeAdapter.retrieve_customer("cus_gone")

        assert result.deleted is True
        assert result.metadata == {}


# =============================================================================
# Events
# =============================================================================


class TestListEvents:
    def test_lists_payment_events_since_window_start(self):
        listed = MagicMock(
            data=[payment_intent_payload(event_id="evt_2"), payment_intent_payload(event_id="evt_1")],
            has_more=True,
        )
        created_after = datetime(2026, 1, 1, tzinfo=timezone.utc)

        with patch("billing.adapters.stripe_adapter.stripe.Event.list") as mock:
            mock.return_value = listed
            page = StripeAdapter.list_events(
                ["payment_intent.succeeded"], created_after, starting_after="evt_3", limit=500
            )

        mock.assert_called_once_with(
            types=["payment_intent.succeeded"],
            created={"gte": int(created_after.timestamp())},
            limit=100,
            starting_after="evt_3",
        )
        assert [e["id"] for e in page.events] == ["evt_2", "evt_1"]
        assert page.has_more is True
        assert page.last_id == "evt_1"

    def test_first_page_has_no_cursor(self):
        with patch("billing.adapters.stripe_adapter.stripe.Event.list") as mock:
            mock.return_value = MagicMock(data=[], has_more=False)
            page = StripeAdapter.list_events(["charge.succeeded"], datetime.now(timezone.utc))

        assert "starting_after" not in mock.call_args.kwargs
        assert page.last_id is None

    def test_empty_page_has_no_cursor(self):
        assert EventPage(events=[]).last_id is None


# =============================================================================
# Webhook Verification
# =============================================================================


class TestVerifyWebhookSignature:
    def test_valid_signature_returns_payload(self):
        body = json.dumps(payment_intent_payload())

        payload = StripeAdapter.verify_webhook_signature(
            body.encode("utf-8"), signed_header(body)
        )

        assert payload["id"] == "evt_intent_001"

    def test_wrong_secret_is_rejected(self):
        body = json.dumps(payment_intent_payload())

        with pytest.raises(WebhookSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(
                body.encode("utf-8"), signed_header(body, secret="whsec_other")
            )

        assert exc_info.value.stripe_code == "signature_verification_failed"

    def test_tampered_body_is_rejected(self):
        body = json.dumps(payment_intent_payload(amount=100))
        header = signed_header(body)
        tampered = body.replace('"amount": 100', '"amount": 999999')

        with pytest.raises(WebhookSignatureError):
            StripeAdapter.verify_webhook_signature(tampered.encode("utf-8"), header)

    def test_stale_timestamp_is_rejected(self):
        body = json.dumps(payment_intent_payload())
        header = signed_header(body, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookSignatureError):
            StripeAdapter.verify_webhook_signature(body.encode("utf-8"), header)

    def test_signed_non_json_is_rejected(self):
        body = "not json"

        with pytest.raises(WebhookSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(body.encode("utf-8"), signed_header(body))

        assert exc_info.value.stripe_code == "invalid_payload"


# =============================================================================
# Error Translation
# =============================================================================


class TestErrorTranslation:
    @pytest.mark.parametrize(
        ("stripe_error", "expected"),
        [
            (stripe.RateLimitError("Too many requests"), StripeRateLimitError),
            (stripe.APIConnectionError("Request timed out"), StripeTimeoutError),
            (stripe.APIConnectionError("Connection refused"), StripeAPIUnavailableError),
            (stripe.AuthenticationError("Invalid API key"), StripeInvalidRequestError),
            (stripe.APIError("Internal error"), StripeAPIUnavailableError),
            (RuntimeError("boom"), StripeAPIUnavailableError),
        ],
    )
    def test_sdk_errors_are_translated(self, stripe_error, expected):
        with patch("billing.adapters.stripe_adapter.stripe.Customer.retrieve") as mock:
            mock.side_effect = stripe_error
            with pytest.raises(expected):
                StripeAdapter.retrieve_customer("cus_001")

    def test_invalid_request_keeps_stripe_code(self):
        error = stripe.InvalidRequestError(
            "No such customer: 'cus_missing'", "id", code="resource_missing"
        )

        with patch("billing.adapters.stripe_adapter.stripe.Customer.retrieve") as mock:
            mock.side_effect = error
            with pytest.raises(StripeInvalidRequestError) as exc_info:
                StripeAdapter.retrieve_customer("cus_missing")

        assert exc_info.value.stripe_code == "resource_missing"


def test_circuit_breaker_is_configured_from_settings(settings):
    settings.STRIPE_CIRCUIT_FAILURE_THRESHOLD = 7

    breaker = stripe_circuit_breaker()

    assert breaker.name == "stripe"
    assert breaker.config.failure_threshold == 7
