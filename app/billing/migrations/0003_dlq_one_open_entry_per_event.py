from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0002_register_periodic_tasks"),
    ]

    operations = [
        migrations.AddConstraint(
            model_name="deadletterentry",
            constraint=models.UniqueConstraint(
                condition=models.Q(("resolved_at__isnull", True)),
                fields=("source_event_id",),
                name="dlq_one_open_entry_per_event",
            ),
        ),
    ]
