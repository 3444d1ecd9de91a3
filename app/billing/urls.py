"""
URL configuration for the billing API.

Routes:
    /webhooks/stripe/                   - Stripe webhook gateway (POST)
    /reconciliation/run/                - Reconciliation trigger (GET/POST)
    /ops/dead-letters/                  - Dead-letter entries (GET)
    /ops/dead-letters/{id}/             - Dead-letter entry detail (GET)
    /ops/dead-letters/{id}/replay/      - Replay one entry (POST)
    /ops/reconciliation-runs/           - Reconciliation runs (GET)
    /ops/reconciliation-runs/{id}/      - Reconciliation run detail (GET)
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from billing.views import DeadLetterEntryViewSet, ReconciliationRunViewSet, run_reconciliation
from billing.webhooks.views import stripe_webhook

router = DefaultRouter()
router.register(r"dead-letters", DeadLetterEntryViewSet, basename="dead-letter")
router.register(
    r"reconciliation-runs", ReconciliationRunViewSet, basename="reconciliation-run"
)

app_name = "billing"
urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    path("reconciliation/run/", run_reconciliation, name="reconciliation-run-trigger"),
    path("ops/", include(router.urls)),
]
