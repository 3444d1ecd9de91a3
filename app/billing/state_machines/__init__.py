"""
State machine enums for billing models.

SubscriptionStatus is enforced by django-fsm transitions on Subscription.
"""

from billing.state_machines.states import (
    PAYMENT_KINDS,
    BillingInterval,
    EventSource,
    PaymentEventKind,
    PaymentEventStatus,
    ReconciliationRunStatus,
    ReconciliationTrigger,
    SubscriptionStatus,
)

__all__ = [
    "PAYMENT_KINDS",
    "BillingInterval",
    "EventSource",
    "PaymentEventKind",
    "PaymentEventStatus",
    "ReconciliationRunStatus",
    "ReconciliationTrigger",
    "SubscriptionStatus",
]
