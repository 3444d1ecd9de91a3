"""
Serializers for the billing operations API.

Serializers:
    DeadLetterEntrySerializer: Dead-letter entry, payload included
    ReconciliationRunSerializer: Reconciliation run report
    ReplayResultSerializer: Response of a single replay
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import DeadLetterEntry, ReconciliationRun


class DeadLetterEntrySerializer(serializers.ModelSerializer):
    """Read-only view of a dead-letter entry."""

    is_resolved = serializers.BooleanField(read_only=True)

    class Meta:
        model = DeadLetterEntry
        fields = [
            "id",
            "source_event_id",
            "event_type",
            "error_message",
            "error_code",
            "retry_count",
            "requires_manual_review",
            "is_resolved",
            "last_attempt_at",
            "resolved_at",
            "payload",
            "created_at",
        ]
        read_only_fields = fields


class ReconciliationRunSerializer(serializers.ModelSerializer):
    duration_seconds = serializers.FloatField(read_only=True, allow_null=True)

    class Meta:
        model = ReconciliationRun
        fields = [
            "id",
            "status",
            "trigger",
            "started_at",
            "completed_at",
            "duration_seconds",
            "window_start",
            "window_end",
            "events_scanned",
            "already_recorded",
            "missing_found",
            "applied",
            "skipped",
            "failed",
            "error_message",
        ]
        read_only_fields = fields


class ReplayResultSerializer(serializers.Serializer):
    """Outcome of replaying one dead-letter entry."""

    event_id = serializers.CharField()
    applied = serializers.BooleanField()
    details = serializers.DictField()
