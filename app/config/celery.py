"""
Celery configuration for the billing event service.

Background work in this service:
- Dead-letter replay (billing.tasks.replay_dead_letters)
- Reconciliation sweeps (billing.tasks.run_reconciliation_sweep)
- Commission hold maturation (affiliates.tasks.approve_matured_commissions)
- Expired IP reputation purge (affiliates.tasks.purge_expired_ip_intel)

Schedules are stored in the database (django-celery-beat) and registered by
the billing and affiliates data migrations.

Redis is both the message broker and result backend. Tasks are
auto-discovered from every installed app's tasks.py.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
