"""
Register the celery-beat schedules for the billing and affiliate jobs.

- Reconciliation sweep: hourly
- Dead-letter replay: every 15 minutes
- Matured commission approval: hourly
- Expired IP reputation purge: daily
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Reconcile Missed Stripe Events",
        "task": "billing.tasks.run_reconciliation_sweep",
        "every": 1,
        "period": "hours",
        "description": (
            "Lists recent payment events from Stripe and dispatches any that "
            "were never processed locally."
        ),
    },
    {
        "name": "Replay Dead-Letter Queue",
        "task": "billing.tasks.replay_dead_letters",
        "every": 15,
        "period": "minutes",
        "description": "Re-dispatches failed events until they succeed or need review.",
    },
    {
        "name": "Approve Matured Commissions",
        "task": "affiliates.tasks.approve_matured_commissions",
        "every": 1,
        "period": "hours",
        "description": "Approves pending commissions whose hold period has passed.",
    },
    {
        "name": "Purge Expired IP Reputation",
        "task": "affiliates.tasks.purge_expired_ip_intel",
        "every": 1,
        "period": "days",
        "description": "Deletes expired IP reputation cache entries.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the interval schedules and periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
