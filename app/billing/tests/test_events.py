"""
Tests for parsing Stripe payloads into typed events.

Tests cover:
- Each payment source and its payment reference
- Supersession rules between reports of one payment
- Reversals, subscription changes and unknown types
- Malformed payloads
"""

from datetime import datetime, timezone

import pytest

from billing.events import (
    PaymentReversed,
    PaymentSource,
    PaymentSucceeded,
    ReversalType,
    SubscriptionAction,
    SubscriptionChanged,
    UnhandledEvent,
    parse_event,
)
from billing.exceptions import EventParseError
from billing.state_machines import PaymentEventKind
from billing.tests.payloads import (
    CREATED,
    charge_payload,
    checkout_payload,
    dispute_payload,
    event_payload,
    invoice_payload,
    payment_intent_payload,
    refund_payload,
    subscription_payload,
)


# =============================================================================
# Payments
# =============================================================================


class TestPaymentParsing:
    def test_payment_intent(self):
        event = parse_event(
            payment_intent_payload(
                metadata={"clinic_id": "7", "ref_code": "REF1", "client_ip": "8.8.8.8"}
            )
        )

        assert isinstance(event, PaymentSucceeded)
        assert event.source == PaymentSource.INTENT
        assert event.kind == PaymentEventKind.INTENT_SUCCEEDED
        assert event.payment_reference == "pi_001"
        assert event.charge_id == "ch_001"
        assert event.amount_cents == 10000
        assert event.customer_id == "cus_001"
        assert event.metadata["clinic_id"] == "7"
        assert event.client_ip == "8.8.8.8"
        assert event.occurred_at == datetime.fromtimestamp(CREATED, tz=timezone.utc)

    def test_charge_reference_is_its_intent(self):
        event = parse_event(charge_payload(email="pay@example.com"))

        assert event.source == PaymentSource.CHARGE
        assert event.payment_reference == "pi_001"
        assert event.email == "pay@example.com"

    def test_standalone_charge_reference_is_the_charge(self):
        event = parse_event(charge_payload(payment_intent=None))

        assert event.payment_reference == "ch_001"
        assert event.superseded_reason() is None

    def test_checkout_session(self):
        event = parse_event(checkout_payload(email="buyer@example.com"))

        assert event.source == PaymentSource.CHECKOUT
        assert event.payment_reference == "pi_001"
        assert event.email == "buyer@example.com"
        assert event.superseded_reason() is None

    def test_invoice_payment(self):
        event = parse_event(invoice_payload())

        assert event.source == PaymentSource.INVOICE
        assert event.kind == PaymentEventKind.INVOICE_PAID
        assert event.invoice_id == "in_001"
        assert event.subscription_id == "sub_001"
        assert event.is_subscription_payment is True
        assert event.payment_reference == "pi_inv_001"

    def test_invoice_paid_is_a_payment(self):
        event = parse_event(invoice_payload(event_type="invoice.paid"))

        assert isinstance(event, PaymentSucceeded)

    def test_invoice_subscription_under_parent(self):
        payload = invoice_payload(subscription=None)
        payload["data"]["object"]["parent"] = {
            "subscription_details": {"subscription": "sub_nested"}
        }

        assert parse_event(payload).subscription_id == "sub_nested"

    def test_expanded_references_use_their_id(self):
        payload = payment_intent_payload()
        payload["data"]["object"]["customer"] = {"id": "cus_expanded", "object": "customer"}
        payload["data"]["object"]["latest_charge"] = {"id": "ch_expanded"}

        event = parse_event(payload)

        assert event.customer_id == "cus_expanded"
        assert event.charge_id == "ch_expanded"


class TestSupersession:
    def test_intent_of_an_invoice_is_superseded(self):
        event = parse_event(payment_intent_payload(invoice="in_001"))

        assert event.superseded_reason() == "payment intent belongs to an invoice"

    def test_charge_of_an_intent_is_superseded(self):
        assert parse_event(charge_payload()).superseded_reason() is not None

    def test_unpaid_checkout_is_superseded(self):
        event = parse_event(checkout_payload(payment_status="unpaid"))

        assert event.superseded_reason() == "checkout session not paid (unpaid)"

    def test_subscription_checkout_is_superseded_by_invoice(self):
        event = parse_event(checkout_payload(invoice="in_001", subscription="sub_001"))

        assert event.superseded_reason() == "checkout session belongs to an invoice"

    def test_invoice_is_never_superseded(self):
        assert parse_event(invoice_payload()).superseded_reason() is None


# =============================================================================
# Reversals & Subscriptions
# =============================================================================


class TestReversalParsing:
    def test_refund(self):
        event = parse_event(refund_payload(amount_refunded=2500))

        assert isinstance(event, PaymentReversed)
        assert event.reversal == ReversalType.REFUND
        assert event.reason == "refund"
        assert event.kind == PaymentEventKind.REFUND
        assert event.amount_cents == 2500
        assert event.payment_reference == "pi_001"

    def test_dispute(self):
        event = parse_event(dispute_payload())

        assert event.reversal == ReversalType.DISPUTE
        assert event.reason == "chargeback"
        assert event.charge_id == "ch_001"
        assert event.object_id == "dp_001"


class TestSubscriptionParsing:
    def test_subscription_fields(self):
        event = parse_event(subscription_payload(interval="month", interval_count=3))

        assert isinstance(event, SubscriptionChanged)
        assert event.action == SubscriptionAction.CREATED
        assert event.status == "active"
        assert event.amount_cents == 9900
        assert event.interval == "month"
        assert event.interval_count == 3
        assert event.current_period_end == datetime.fromtimestamp(
            CREATED + 30 * 86400, tz=timezone.utc
        )

    def test_periods_on_items(self):
        payload = subscription_payload(period_start=None, period_end=None)
        item = payload["data"]["object"]["items"]["data"][0]
        item["current_period_start"] = CREATED
        item["current_period_end"] = CREATED + 86400

        event = parse_event(payload)

        assert event.current_period_end == datetime.fromtimestamp(
            CREATED + 86400, tz=timezone.utc
        )

    def test_deleted_action(self):
        event = parse_event(subscription_payload(action="deleted", status="canceled"))

        assert event.action == SubscriptionAction.DELETED


class TestUnhandled:
    def test_unknown_type_is_unhandled(self):
        event = parse_event(
            event_payload("evt_x", "customer.created", {"id": "cus_001", "object": "customer"})
        )

        assert isinstance(event, UnhandledEvent)
        assert event.kind == PaymentEventKind.IGNORED
        assert event.source_object_id == "cus_001"
        assert event.payment_reference is None


# =============================================================================
# Malformed Payloads
# =============================================================================


class TestMalformed:
    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {"type": "charge.succeeded", "data": {"object": {}}},
            {"id": "evt_1", "data": {"object": {}}},
            {"id": "evt_1", "type": "charge.succeeded"},
            {"id": "evt_1", "type": "charge.succeeded", "data": {"object": "x"}},
            {"id": "evt_1", "type": "charge.succeeded", "data": ["x"]},
            {"id": "evt_1", "type": "customer.created", "data": "x"},
        ],
    )
    def test_missing_envelope(self, payload):
        with pytest.raises(EventParseError):
            parse_event(payload)

    def test_payment_without_object_id(self):
        payload = payment_intent_payload()
        del payload["data"]["object"]["id"]

        with pytest.raises(EventParseError) as exc_info:
            parse_event(payload)

        assert exc_info.value.error_code == "EVENT_PARSE_ERROR"

    def test_bad_timestamp(self):
        with pytest.raises(EventParseError):
            parse_event(subscription_payload(period_end="soon"))

    def test_metadata_that_is_not_an_object(self):
        payload = payment_intent_payload()
        payload["data"]["object"]["metadata"] = ["a"]

        with pytest.raises(EventParseError) as exc_info:
            parse_event(payload)

        assert exc_info.value.error_code == "EVENT_PARSE_ERROR"

    def test_nested_object_that_is_not_an_object(self):
        payload = charge_payload()
        payload["data"]["object"]["billing_details"] = ["x"]

        with pytest.raises(EventParseError):
            parse_event(payload)
