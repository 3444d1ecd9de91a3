"""
Affiliates app configuration.

This app provides:
- Referral attribution of patients to affiliates
- Commission accrual, holds, approval and clawback
- Fraud scoring with IP reputation intelligence
"""

from django.apps import AppConfig


class AffiliatesConfig(AppConfig):
    """Configuration for the affiliates application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "affiliates"
    verbose_name = "Affiliates"
