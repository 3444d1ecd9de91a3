import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("patients", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="RefillQueueEntry",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("pending_payment", "Pending Payment"),
                            ("payment_verified", "Payment Verified"),
                            ("approved", "Approved"),
                            ("prescribed", "Prescribed"),
                        ],
                        db_index=True,
                        default="scheduled",
                        max_length=20,
                    ),
                ),
                ("next_refill_date", models.DateField()),
                (
                    "expected_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Minimum payment in cents; empty accepts any amount",
                        null=True,
                    ),
                ),
                ("payment_verified", models.BooleanField(default=False)),
                ("payment_verified_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Canonical payment id that verified this refill",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "invoice_reference",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refills",
                        to="patients.clinic",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="refills",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refill Queue Entry",
                "verbose_name_plural": "Refill Queue Entries",
                "ordering": ["next_refill_date"],
                "indexes": [
                    models.Index(
                        fields=["patient", "clinic", "status"],
                        name="refill_patient_status_idx",
                    )
                ],
            },
        ),
    ]
