"""
Billing app: Stripe event ingestion, dispatch and reconciliation.

Components:
    - billing.webhooks.views.stripe_webhook: signed webhook gateway
    - billing.events: closed tagged union of inbound events
    - billing.dispatcher.EventDispatcher: idempotent effect application
    - billing.services.subscription_sync: subscription state projection
    - billing.services.reconciliation_service: missed-event sweep
    - billing.tasks: dead-letter replay and scheduled sweeps
"""
