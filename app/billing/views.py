"""
Views for the billing API.

Endpoints:
    Reconciliation trigger (shared secret, for external schedulers):
        GET|POST /api/v1/billing/reconciliation/run/

    Operations (staff only):
        GET  /api/v1/billing/ops/dead-letters/ - List dead-letter entries
        GET  /api/v1/billing/ops/dead-letters/{id}/ - Dead-letter entry detail
        POST /api/v1/billing/ops/dead-letters/{id}/replay/ - Replay one entry
        GET  /api/v1/billing/ops/reconciliation-runs/ - List sweep reports
        GET  /api/v1/billing/ops/reconciliation-runs/{id}/ - Sweep report
"""

from __future__ import annotations

import hmac
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from billing.models import DeadLetterEntry, ReconciliationRun
from billing.serializers import (
    DeadLetterEntrySerializer,
    ReconciliationRunSerializer,
    ReplayResultSerializer,
)
from billing.services import DeadLetterReplayService, ReconciliationService
from billing.state_machines import ReconciliationTrigger

logger = logging.getLogger(__name__)


# =============================================================================
# Reconciliation Trigger
# =============================================================================


def _presented_secret(request: HttpRequest) -> str:
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :].strip()
    return request.headers.get("X-Cron-Secret", "").strip()


@csrf_exempt
@require_http_methods(["GET", "POST"])
def run_reconciliation(request: HttpRequest) -> JsonResponse:
    """
    Run a reconciliation sweep for an external scheduler.

    Authenticated by CRON_SECRET, sent as ``Authorization: Bearer <secret>``
    or ``X-Cron-Secret: <secret>``. Safe to call repeatedly: an overlapping
    call reports ``skipped``.

    Returns:
        - 200: Run report, or {"status": "skipped"} if a sweep is running
        - 401: Missing or wrong secret
        - 503: CRON_SECRET is not configured
    """
    expected = getattr(settings, "CRON_SECRET", "")
    if not expected:
        logger.error("Reconciliation trigger called but CRON_SECRET is not set")
        return JsonResponse(
            {"error": "Reconciliation trigger is not configured"}, status=503
        )

    presented = _presented_secret(request)
    if not presented or not hmac.compare_digest(
        presented.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Reconciliation trigger rejected: bad secret")
        return JsonResponse({"error": "Unauthorized"}, status=401)

    result = ReconciliationService().run_sweep(trigger=ReconciliationTrigger.CRON)
    if not result.success:
        return JsonResponse(
            {
                "status": result.details.get("status", "failed"),
                "error": result.error,
                "error_code": result.error_code,
            }
        )
    return JsonResponse(result.data.as_report())


# =============================================================================
# Operations API
# =============================================================================


def _flag(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


@extend_schema_view(
    list=extend_schema(
        operation_id="list_dead_letters",
        summary="List dead-letter entries",
        parameters=[
            OpenApiParameter(
                name="resolved",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Filter by resolution (true/false)",
                required=False,
            ),
            OpenApiParameter(
                name="requires_manual_review",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Filter by the manual review flag (true/false)",
                required=False,
            ),
        ],
        tags=["Billing - Operations"],
    ),
    retrieve=extend_schema(
        operation_id="get_dead_letter",
        summary="Get dead-letter entry",
        tags=["Billing - Operations"],
    ),
)
class DeadLetterEntryViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Dead-letter queue for operators.

    Filtering:
    - ?resolved=true/false
    - ?requires_manual_review=true/false
    """

    permission_classes = [IsAdminUser]
    serializer_class = DeadLetterEntrySerializer

    def get_queryset(self):
        queryset = DeadLetterEntry.objects.all().order_by("-created_at")

        resolved = _flag(self.request.query_params.get("resolved"))
        if resolved is not None:
            queryset = queryset.filter(resolved_at__isnull=not resolved)

        manual_review = _flag(self.request.query_params.get("requires_manual_review"))
        if manual_review is not None:
            queryset = queryset.filter(requires_manual_review=manual_review)

        return queryset

    @extend_schema(
        operation_id="replay_dead_letter",
        summary="Replay dead-letter entry",
        description=(
            "Re-dispatch the entry's event now. A failed replay counts as an "
            "attempt against DLQ_MAX_REPLAY_ATTEMPTS."
        ),
        request=None,
        responses={
            200: ReplayResultSerializer,
            409: OpenApiResponse(description="Entry already resolved"),
            422: OpenApiResponse(description="Replay failed"),
        },
        tags=["Billing - Operations"],
    )
    @action(detail=True, methods=["post"])
    def replay(self, request, pk=None):
        entry = self.get_object()
        result = DeadLetterReplayService().replay(entry)

        if result.success:
            outcome = result.data
            serializer = ReplayResultSerializer(
                {
                    "event_id": outcome.event_id,
                    "applied": outcome.applied,
                    "details": outcome.details,
                }
            )
            return Response(serializer.data)

        code = (
            status.HTTP_409_CONFLICT
            if result.error_code == "DEAD_LETTER_RESOLVED"
            else status.HTTP_422_UNPROCESSABLE_ENTITY
        )
        return Response(result.to_response(), status=code)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_reconciliation_runs",
        summary="List reconciliation runs",
        tags=["Billing - Operations"],
    ),
    retrieve=extend_schema(
        operation_id="get_reconciliation_run",
        summary="Get reconciliation run",
        tags=["Billing - Operations"],
    ),
)
class ReconciliationRunViewSet(viewsets.ReadOnlyModelViewSet):
    """Reconciliation sweep history, newest first."""

    permission_classes = [IsAdminUser]
    serializer_class = ReconciliationRunSerializer
    queryset = ReconciliationRun.objects.all().order_by("-started_at")
