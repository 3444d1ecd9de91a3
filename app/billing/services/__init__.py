"""
Billing services.

- SubscriptionSynchronizer: projects subscription events onto Subscription
- ReconciliationService: re-drives payment events missed by webhooks
- DeadLetterReplayService: replays dead-lettered events
"""

from billing.services.dead_letter_service import DeadLetterReplayService
from billing.services.reconciliation_service import ReconciliationService
from billing.services.subscription_sync import (
    SubscriptionSynchronizer,
    classify_interval,
    map_status,
)

__all__ = [
    "DeadLetterReplayService",
    "ReconciliationService",
    "SubscriptionSynchronizer",
    "classify_interval",
    "map_status",
]
