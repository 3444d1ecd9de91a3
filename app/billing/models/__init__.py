"""
Billing domain models.

- PaymentEvent: every inbound Stripe event, keyed by its event id
- DeadLetterEntry: events whose effects failed to apply
- Subscription: local projection of Stripe subscriptions
- ReconciliationRun: history of missed-event sweeps
"""

from billing.models.dead_letter import DeadLetterEntry
from billing.models.payment_event import PaymentEvent
from billing.models.reconciliation import ReconciliationRun
from billing.models.subscription import Subscription

__all__ = [
    "DeadLetterEntry",
    "PaymentEvent",
    "ReconciliationRun",
    "Subscription",
]
