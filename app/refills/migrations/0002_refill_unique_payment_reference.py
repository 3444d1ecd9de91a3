from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("refills", "0001_initial"),
    ]

    operations = [
        migrations.AddConstraint(
            model_name="refillqueueentry",
            constraint=models.UniqueConstraint(
                condition=models.Q(("payment_reference__isnull", False)),
                fields=("payment_reference",),
                name="refill_unique_payment_reference",
            ),
        ),
    ]
