"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the Stripe-Signature header
2. Parses the payload into a typed event
3. Dispatches it synchronously through the idempotent dispatcher
4. Answers 200 with the outcome

Anything other than a missing or invalid signature is acknowledged with
200. Failed effects are dead-lettered by the dispatcher; events that never
reach the dispatcher are picked up by the reconciliation sweep. Answering
non-2xx would only make Stripe redeliver into the same failure.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.adapters import StripeAdapter
from billing.dispatcher import EventDispatcher
from billing.events import CRITICAL_EVENT_TYPES, parse_event
from billing.exceptions import EventParseError, WebhookSignatureError
from billing.state_machines import EventSource
from core.alerts import send_alert

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive, verify and dispatch a Stripe webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event acknowledged; body is
          {"received": true, "event_id", "applied", "details"}
        - 400: Missing or invalid signature

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error_code": e.stripe_code},
        )
        return HttpResponse("Invalid signature", status=400)

    try:
        event = parse_event(event_data)
    except EventParseError as e:
        event_id = event_data.get("id") if isinstance(event_data, dict) else None
        logger.warning(
            f"Verified webhook could not be parsed: {e.message}",
            extra={"stripe_event_id": event_id, "error_code": e.error_code},
        )
        return JsonResponse(
            {
                "received": True,
                "event_id": event_id,
                "applied": False,
                "details": {"error": e.message, "error_code": e.error_code},
            }
        )

    logger.info(
        f"Received Stripe webhook: {event.event_type}",
        extra={"stripe_event_id": event.event_id, "event_type": event.event_type},
    )

    try:
        outcome = EventDispatcher().dispatch(event, source=EventSource.WEBHOOK)
    except Exception as e:
        logger.exception(
            f"Webhook processing failed catastrophically: {type(e).__name__}",
            extra={"stripe_event_id": event.event_id, "event_type": event.event_type},
        )
        if event.event_type in CRITICAL_EVENT_TYPES:
            send_alert(
                "Payment webhook failed without a dead-letter entry",
                "A payment event could not be processed or dead-lettered. "
                "The reconciliation sweep will retry it.",
                {
                    "stripe_event_id": event.event_id,
                    "event_type": event.event_type,
                    "error": type(e).__name__,
                },
            )
        return JsonResponse(
            {
                "received": True,
                "event_id": event.event_id,
                "applied": False,
                "details": {"error": "internal error"},
            }
        )

    return JsonResponse(outcome.as_response())
