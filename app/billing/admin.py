"""
Billing admin configuration.

Payment events, dead-letter entries and reconciliation runs are audit
records: they are read-only and cannot be deleted here. Dead-letter
entries can be replayed from the list with an admin action.
"""

from django.contrib import admin, messages

from billing.models import DeadLetterEntry, PaymentEvent, ReconciliationRun, Subscription
from billing.services import DeadLetterReplayService


class ReadOnlyAdminMixin:
    """Admin that can view but not add, change or delete."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentEvent)
class PaymentEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "stripe_event_id",
        "event_type",
        "kind",
        "status",
        "amount_display",
        "payment_reference",
        "patient",
        "source",
        "attempts",
        "occurred_at",
    ]
    list_filter = ["status", "kind", "source"]
    search_fields = ["stripe_event_id", "payment_reference", "source_object_id", "customer_id"]
    date_hierarchy = "occurred_at"

    @admin.display(description="Amount")
    def amount_display(self, obj: PaymentEvent) -> str:
        if obj.amount_cents is None:
            return "-"
        return f"{obj.amount_cents / 100:.2f} {obj.currency.upper()}"


@admin.register(DeadLetterEntry)
class DeadLetterEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "source_event_id",
        "event_type",
        "error_code",
        "retry_count",
        "requires_manual_review",
        "last_attempt_at",
        "resolved_at",
    ]
    list_filter = ["requires_manual_review", "error_code", "event_type"]
    search_fields = ["source_event_id"]
    actions = ["replay_entries"]

    @admin.action(description="Replay selected entries")
    def replay_entries(self, request, queryset):
        service = DeadLetterReplayService()
        resolved = failed = 0
        for entry in queryset.filter(resolved_at__isnull=True):
            if service.replay(entry):
                resolved += 1
            else:
                failed += 1
        level = messages.WARNING if failed else messages.SUCCESS
        self.message_user(request, f"{resolved} resolved, {failed} failed.", level)


@admin.register(Subscription)
class SubscriptionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "stripe_subscription_id",
        "patient",
        "clinic",
        "status",
        "billing_interval",
        "amount_cents",
        "next_billing_date",
        "cancel_at_period_end",
    ]
    list_filter = ["status", "billing_interval", "clinic"]
    search_fields = ["stripe_subscription_id", "stripe_customer_id"]


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "status",
        "trigger",
        "started_at",
        "events_scanned",
        "missing_found",
        "applied",
        "skipped",
        "failed",
    ]
    list_filter = ["status", "trigger"]
