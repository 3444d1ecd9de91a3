"""
Patients admin configuration.

Patients are owned by the intake workflow; the admin here exists to inspect
and correct Stripe customer links.
"""

from django.contrib import admin

from patients.models import Clinic, CustomerLink, Patient


@admin.register(Clinic)
class ClinicAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "stripe_account_id", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["name", "stripe_account_id"]
    readonly_fields = ["created_at", "updated_at"]


class CustomerLinkInline(admin.TabularInline):
    model = CustomerLink
    extra = 0
    fields = ["stripe_customer_id", "clinic", "linked_via", "created_at"]
    readonly_fields = ["created_at"]


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    """
    Admin configuration for Patient.

    Search is by id and Stripe customer id only; emails are matched by the
    resolver, not browsed.
    """

    list_display = ["id", "clinic", "stripe_customer_id", "created_at"]
    list_filter = ["clinic"]
    search_fields = ["id", "stripe_customer_id"]
    readonly_fields = ["email_normalized", "created_at", "updated_at"]
    inlines = [CustomerLinkInline]


@admin.register(CustomerLink)
class CustomerLinkAdmin(admin.ModelAdmin):
    list_display = ["stripe_customer_id", "patient", "clinic", "linked_via", "created_at"]
    list_filter = ["linked_via", "clinic"]
    search_fields = ["stripe_customer_id", "patient__id"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["patient"]
