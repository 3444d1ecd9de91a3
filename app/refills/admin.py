"""Refills admin configuration."""

from django.contrib import admin

from refills.models import RefillQueueEntry


@admin.register(RefillQueueEntry)
class RefillQueueEntryAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "patient",
        "clinic",
        "status",
        "next_refill_date",
        "expected_amount_cents",
        "payment_verified",
        "payment_reference",
    ]
    list_filter = ["status", "payment_verified", "clinic"]
    search_fields = ["id", "payment_reference", "invoice_reference"]
    readonly_fields = ["payment_verified_at", "created_at", "updated_at"]
    raw_id_fields = ["patient"]
