"""
Typed inbound billing events.

Stripe payloads are parsed exactly once, at the gateway (or by the
reconciliation sweep), into a closed union of frozen dataclasses:

    PaymentSucceeded     payment_intent.succeeded, charge.succeeded,
                         checkout.session.completed, invoice.payment_succeeded,
                         invoice.paid
    PaymentReversed      charge.refunded, charge.dispute.created
    SubscriptionChanged  customer.subscription.created/updated/deleted/
                         paused/resumed
    UnhandledEvent       everything else

Everything downstream of ``parse_event`` works with these types; nothing
reads the raw payload shape. The raw payload rides along on ``payload`` for
storage only.

Usage:
    from billing.events import PaymentSucceeded, parse_event

    event = parse_event(payload)
    if isinstance(event, PaymentSucceeded):
        print(event.payment_reference, event.amount_cents)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from typing import TYPE_CHECKING

from django.utils import timezone

from billing.exceptions import EventParseError
from billing.state_machines import PaymentEventKind

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Event Type Constants
# =============================================================================

PAYMENT_SUCCESS_TYPES = (
    "payment_intent.succeeded",
    "charge.succeeded",
    "checkout.session.completed",
    "invoice.payment_succeeded",
    "invoice.paid",
)

REVERSAL_TYPES = (
    "charge.refunded",
    "charge.dispute.created",
)

SUBSCRIPTION_TYPES = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
)

# A failure on one of these may mean a patient paid and got nothing
CRITICAL_EVENT_TYPES = frozenset(
    {
        "payment_intent.succeeded",
        "charge.succeeded",
        "checkout.session.completed",
        "invoice.payment_succeeded",
    }
)


class PaymentSource(str, Enum):
    """Stripe object that reported a successful payment."""

    INTENT = "payment_intent"
    CHARGE = "charge"
    CHECKOUT = "checkout_session"
    INVOICE = "invoice"


class ReversalType(str, Enum):
    REFUND = "refund"
    DISPUTE = "dispute"


class SubscriptionAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    PAUSED = "paused"
    RESUMED = "resumed"


# =============================================================================
# Event Variants
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """
    Fields common to every inbound event.

    Attributes:
        event_id: Stripe event id (evt_xxx), the idempotency key
        event_type: Stripe event type string
        occurred_at: When the event happened at Stripe
        account: Connected account id for Connect events
        customer_id: Stripe customer id, when the object has one
        metadata: The object's metadata (clinic_id, ref_code, client_ip, ...)
        payload: Full raw payload, stored for audit and replay
    """

    event_id: str
    event_type: str
    occurred_at: datetime
    account: str | None = None
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict, compare=False)
    payload: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def kind(self) -> str:
        return PaymentEventKind.IGNORED

    @property
    def source_object_id(self) -> str | None:
        return None

    @property
    def payment_reference(self) -> str | None:
        return None

    @property
    def amount_cents(self) -> int | None:
        return None

    @property
    def currency(self) -> str | None:
        return None


@dataclass(frozen=True, kw_only=True)
class PaymentSucceeded(BillingEvent):
    """
    A successful payment, as reported by one of four Stripe objects.

    One economic payment is often reported several times (a checkout
    session, its payment intent and the intent's charge). The
    ``payment_reference`` collapses those reports onto one key.
    """

    source: PaymentSource
    object_id: str
    amount: int
    currency_code: str = "usd"
    email: str | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None
    invoice_id: str | None = None
    subscription_id: str | None = None
    payment_status: str | None = None

    @property
    def kind(self) -> str:
        return {
            PaymentSource.INTENT: PaymentEventKind.INTENT_SUCCEEDED,
            PaymentSource.CHARGE: PaymentEventKind.CHARGE_SUCCEEDED,
            PaymentSource.CHECKOUT: PaymentEventKind.CHECKOUT_COMPLETED,
            PaymentSource.INVOICE: PaymentEventKind.INVOICE_PAID,
        }[self.source]

    @property
    def source_object_id(self) -> str:
        return self.object_id

    @property
    def payment_reference(self) -> str:
        """Payment intent id, else charge id, else the reporting object id."""
        return self.payment_intent_id or self.charge_id or self.object_id

    @property
    def amount_cents(self) -> int:
        return self.amount

    @property
    def currency(self) -> str:
        return self.currency_code

    @property
    def is_subscription_payment(self) -> bool:
        return bool(self.subscription_id)

    @property
    def client_ip(self) -> str | None:
        return self.metadata.get("client_ip") or self.metadata.get("ip_address")

    def superseded_reason(self) -> str | None:
        """
        Reason this report is covered by another object, or None.

        Invoice payments are represented by the invoice; intent payments by
        the intent. Subscription checkouts are represented by their invoice.
        """
        if self.source == PaymentSource.INTENT and self.invoice_id:
            return "payment intent belongs to an invoice"
        if self.source == PaymentSource.CHARGE and (
            self.payment_intent_id or self.invoice_id
        ):
            return "charge belongs to a payment intent or invoice"
        if self.source == PaymentSource.CHECKOUT:
            if self.payment_status != "paid":
                return f"checkout session not paid ({self.payment_status})"
            if self.invoice_id:
                return "checkout session belongs to an invoice"
        return None


@dataclass(frozen=True, kw_only=True)
class PaymentReversed(BillingEvent):
    """A refund or dispute against an earlier payment."""

    reversal: ReversalType
    object_id: str
    charge_id: str | None = None
    payment_intent_id: str | None = None
    amount: int = 0
    currency_code: str = "usd"

    @property
    def kind(self) -> str:
        if self.reversal == ReversalType.DISPUTE:
            return PaymentEventKind.DISPUTE
        return PaymentEventKind.REFUND

    @property
    def source_object_id(self) -> str:
        return self.object_id

    @property
    def payment_reference(self) -> str:
        return self.payment_intent_id or self.charge_id or self.object_id

    @property
    def amount_cents(self) -> int:
        return self.amount

    @property
    def currency(self) -> str:
        return self.currency_code

    @property
    def reason(self) -> str:
        return "chargeback" if self.reversal == ReversalType.DISPUTE else "refund"


@dataclass(frozen=True, kw_only=True)
class SubscriptionChanged(BillingEvent):
    """A subscription lifecycle change."""

    action: SubscriptionAction
    subscription_id: str
    status: str
    amount: int = 0
    currency_code: str = "usd"
    interval: str | None = None
    interval_count: int = 1
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    email: str | None = None

    @property
    def kind(self) -> str:
        return PaymentEventKind.SUBSCRIPTION

    @property
    def source_object_id(self) -> str:
        return self.subscription_id

    @property
    def amount_cents(self) -> int:
        return self.amount

    @property
    def currency(self) -> str:
        return self.currency_code


@dataclass(frozen=True, kw_only=True)
class UnhandledEvent(BillingEvent):
    """An event type with no local effects."""

    object_id: str | None = None

    @property
    def source_object_id(self) -> str | None:
        return self.object_id


# =============================================================================
# Parsing
# =============================================================================


def _ref(value: Any) -> str | None:
    """Id of an expandable field, whether expanded or not."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError) as e:
        raise EventParseError(
            f"Invalid timestamp {value!r}", details={"value": str(value)}
        ) from e


def _metadata(obj: dict[str, Any]) -> dict[str, str]:
    raw = obj.get("metadata") or {}
    if not isinstance(raw, dict):
        raise EventParseError(
            "Event metadata is not an object", details={"object_id": obj.get("id")}
        )
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def _invoice_subscription(invoice: dict[str, Any]) -> str | None:
    # Newer API versions move the subscription under parent.subscription_details
    direct = _ref(invoice.get("subscription"))
    if direct:
        return direct
    parent = invoice.get("parent") or {}
    return _ref((parent.get("subscription_details") or {}).get("subscription"))


def _parse_payment(
    event_type: str, obj: dict[str, Any], common: dict[str, Any]
) -> PaymentSucceeded:
    if event_type == "payment_intent.succeeded":
        return PaymentSucceeded(
            **common,
            source=PaymentSource.INTENT,
            object_id=obj["id"],
            amount=int(obj.get("amount_received") or obj.get("amount") or 0),
            currency_code=obj.get("currency") or "usd",
            email=obj.get("receipt_email"),
            payment_intent_id=obj["id"],
            charge_id=_ref(obj.get("latest_charge")),
            invoice_id=_ref(obj.get("invoice")),
        )

    if event_type == "charge.succeeded":
        billing_details = obj.get("billing_details") or {}
        return PaymentSucceeded(
            **common,
            source=PaymentSource.CHARGE,
            object_id=obj["id"],
            amount=int(obj.get("amount_captured") or obj.get("amount") or 0),
            currency_code=obj.get("currency") or "usd",
            email=billing_details.get("email") or obj.get("receipt_email"),
            payment_intent_id=_ref(obj.get("payment_intent")),
            charge_id=obj["id"],
            invoice_id=_ref(obj.get("invoice")),
        )

    if event_type == "checkout.session.completed":
        customer_details = obj.get("customer_details") or {}
        return PaymentSucceeded(
            **common,
            source=PaymentSource.CHECKOUT,
            object_id=obj["id"],
            amount=int(obj.get("amount_total") or 0),
            currency_code=obj.get("currency") or "usd",
            email=customer_details.get("email") or obj.get("customer_email"),
            payment_intent_id=_ref(obj.get("payment_intent")),
            invoice_id=_ref(obj.get("invoice")),
            subscription_id=_ref(obj.get("subscription")),
            payment_status=obj.get("payment_status"),
        )

    # invoice.payment_succeeded / invoice.paid
    return PaymentSucceeded(
        **common,
        source=PaymentSource.INVOICE,
        object_id=obj["id"],
        amount=int(obj.get("amount_paid") or 0),
        currency_code=obj.get("currency") or "usd",
        email=obj.get("customer_email"),
        payment_intent_id=_ref(obj.get("payment_intent")),
        charge_id=_ref(obj.get("charge")),
        invoice_id=obj["id"],
        subscription_id=_invoice_subscription(obj),
    )


def _parse_reversal(
    event_type: str, obj: dict[str, Any], common: dict[str, Any]
) -> PaymentReversed:
    if event_type == "charge.dispute.created":
        return PaymentReversed(
            **common,
            reversal=ReversalType.DISPUTE,
            object_id=obj["id"],
            charge_id=_ref(obj.get("charge")),
            payment_intent_id=_ref(obj.get("payment_intent")),
            amount=int(obj.get("amount") or 0),
            currency_code=obj.get("currency") or "usd",
        )

    return PaymentReversed(
        **common,
        reversal=ReversalType.REFUND,
        object_id=obj["id"],
        charge_id=obj["id"],
        payment_intent_id=_ref(obj.get("payment_intent")),
        amount=int(obj.get("amount_refunded") or 0),
        currency_code=obj.get("currency") or "usd",
    )


def _parse_subscription(
    event_type: str, obj: dict[str, Any], common: dict[str, Any]
) -> SubscriptionChanged:
    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or obj.get("plan") or {}
    recurring = price.get("recurring") or {}
    quantity = int(first_item.get("quantity") or 1)

    interval = recurring.get("interval") or price.get("interval")
    interval_count = recurring.get("interval_count") or price.get("interval_count") or 1
    unit_amount = price.get("unit_amount")
    if unit_amount is None:
        unit_amount = price.get("amount") or 0

    # Newer API versions carry billing periods on the items
    period_start = obj.get("current_period_start") or first_item.get(
        "current_period_start"
    )
    period_end = obj.get("current_period_end") or first_item.get("current_period_end")

    return SubscriptionChanged(
        **common,
        action=SubscriptionAction(event_type.rsplit(".", 1)[1]),
        subscription_id=obj["id"],
        status=obj.get("status") or "",
        amount=int(unit_amount) * quantity,
        currency_code=obj.get("currency") or price.get("currency") or "usd",
        interval=interval,
        interval_count=int(interval_count),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        canceled_at=_timestamp(obj.get("canceled_at")),
    )


def parse_event(payload: Any) -> BillingEvent:
    """
    Parse a Stripe event payload into its typed variant.

    Args:
        payload: Event JSON as a dict (webhook body or listed event)

    Returns:
        PaymentSucceeded, PaymentReversed, SubscriptionChanged or
        UnhandledEvent

    Raises:
        EventParseError: The payload lacks an id, type or data.object, or
            a field the variant needs is malformed
    """
    if not isinstance(payload, dict):
        raise EventParseError("Event payload is not an object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not isinstance(event_id, str):
        raise EventParseError(
            "Event payload has no id", details={"event_type": event_type}
        )
    if not event_type or not isinstance(event_type, str):
        raise EventParseError(
            "Event payload has no type", details={"event_id": event_id}
        )

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise EventParseError(
            "Event payload has no data.object",
            details={"event_id": event_id, "event_type": event_type},
        )

    common = {
        "event_id": event_id,
        "event_type": event_type,
        "occurred_at": (
            _timestamp(payload.get("created"))
            or _timestamp(obj.get("created"))
            or timezone.now()
        ),
        "account": payload.get("account"),
        "customer_id": _ref(obj.get("customer")),
        "metadata": _metadata(obj),
        "payload": payload,
    }

    try:
        if event_type in PAYMENT_SUCCESS_TYPES:
            return _parse_payment(event_type, obj, common)
        if event_type in REVERSAL_TYPES:
            return _parse_reversal(event_type, obj, common)
        if event_type in SUBSCRIPTION_TYPES:
            return _parse_subscription(event_type, obj, common)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        # A nested object arrived as a list or scalar
        raise EventParseError(
            f"Malformed {event_type} payload: {e}",
            details={"event_id": event_id, "event_type": event_type},
        ) from e

    return UnhandledEvent(**common, object_id=obj.get("id"))


__all__ = [
    "BillingEvent",
    "PaymentSucceeded",
    "PaymentReversed",
    "SubscriptionChanged",
    "UnhandledEvent",
    "PaymentSource",
    "ReversalType",
    "SubscriptionAction",
    "PAYMENT_SUCCESS_TYPES",
    "REVERSAL_TYPES",
    "SUBSCRIPTION_TYPES",
    "CRITICAL_EVENT_TYPES",
    "parse_event",
]
