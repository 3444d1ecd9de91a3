"""
Patients app configuration.

Clinics are the tenant scope for patients, affiliates and fraud settings.
"""

from django.apps import AppConfig


class PatientsConfig(AppConfig):
    """Configuration for the patients application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "patients"
    verbose_name = "Patients"
