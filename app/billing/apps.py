"""
Billing app configuration.

This app owns the Stripe integration:
- Webhook gateway and idempotent event dispatch
- Dead-letter queue and reconciliation sweeps
- Subscription state synchronization
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"
