"""
Affiliates admin configuration.

Commission events and ledger lines are read-only here: status changes go
through the commission engine so the ledger stays consistent.
"""

from django.contrib import admin

from affiliates.models import (
    Affiliate,
    AffiliateFraudConfig,
    CommissionEvent,
    CommissionLedgerLine,
    CommissionPlan,
    FraudAlert,
    IpIntelCacheEntry,
    ReferralAttribution,
    ReferralTouch,
)


@admin.register(CommissionPlan)
class CommissionPlanAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "clinic",
        "plan_type",
        "flat_amount_cents",
        "percent_bps",
        "applies_to",
        "recurring_enabled",
        "hold_days",
        "is_active",
    ]
    list_filter = ["plan_type", "applies_to", "is_active", "clinic"]
    search_fields = ["name"]
    fieldsets = (
        (None, {"fields": ("clinic", "name", "plan_type", "is_active")}),
        ("Base Rates", {"fields": ("flat_amount_cents", "percent_bps")}),
        (
            "Overrides",
            {
                "fields": (
                    "initial_flat_amount_cents",
                    "initial_percent_bps",
                    "recurring_flat_amount_cents",
                    "recurring_percent_bps",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Policy",
            {"fields": ("applies_to", "recurring_enabled", "hold_days", "clawback_enabled")},
        ),
    )


@admin.register(Affiliate)
class AffiliateAdmin(admin.ModelAdmin):
    list_display = ["display_name", "ref_code", "clinic", "status", "commission_plan"]
    list_filter = ["status", "clinic"]
    search_fields = ["display_name", "ref_code"]
    readonly_fields = ["created_at", "updated_at"]


@admin.register(ReferralTouch)
class ReferralTouchAdmin(admin.ModelAdmin):
    list_display = ["affiliate", "clinic", "converted_patient", "touched_at"]
    list_filter = ["clinic"]
    raw_id_fields = ["affiliate", "converted_patient"]
    readonly_fields = ["ip_hash"]


@admin.register(ReferralAttribution)
class ReferralAttributionAdmin(admin.ModelAdmin):
    list_display = ["patient", "affiliate", "clinic", "attributed_via", "created_at"]
    list_filter = ["attributed_via", "clinic"]
    raw_id_fields = ["patient", "affiliate"]


class CommissionLedgerLineInline(admin.TabularInline):
    model = CommissionLedgerLine
    extra = 0
    can_delete = False
    fields = ["kind", "amount_cents", "source_event_id", "created_at"]
    readonly_fields = fields


@admin.register(CommissionEvent)
class CommissionEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for CommissionEvent.

    Read-only. Fraud-held commissions can be found with the fraud_hold filter.
    """

    list_display = [
        "id",
        "affiliate",
        "payment_reference",
        "commission_amount_cents",
        "status",
        "fraud_hold",
        "risk_score",
        "occurred_at",
    ]
    list_filter = ["status", "fraud_hold", "is_first_payment", "is_recurring", "clinic"]
    search_fields = ["id", "source_event_id", "payment_reference", "charge_id"]
    readonly_fields = [f.name for f in CommissionEvent._meta.fields]
    inlines = [CommissionLedgerLineInline]
    ordering = ["-occurred_at"]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AffiliateFraudConfig)
class AffiliateFraudConfigAdmin(admin.ModelAdmin):
    list_display = [
        "clinic",
        "enabled",
        "max_conversions_per_day",
        "max_conversions_per_ip",
        "block_datacenter",
        "block_proxy_vpn",
        "auto_suspend_on_critical",
    ]


@admin.register(FraudAlert)
class FraudAlertAdmin(admin.ModelAdmin):
    list_display = ["alert_type", "severity", "affiliate", "status", "risk_score", "created_at"]
    list_filter = ["alert_type", "severity", "status", "clinic"]
    search_fields = ["affiliate__ref_code", "description"]
    readonly_fields = ["evidence", "created_at", "updated_at"]
    raw_id_fields = ["commission_event"]


@admin.register(IpIntelCacheEntry)
class IpIntelCacheEntryAdmin(admin.ModelAdmin):
    list_display = ["ip_hash", "provider", "risk_score", "is_tor", "is_datacenter", "expires_at"]
    list_filter = ["provider", "is_tor", "is_datacenter", "is_proxy", "is_vpn"]
    search_fields = ["ip_hash"]
