import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


def _timestamps():
    return [
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
    ]


def _uuid_id():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("patients", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DeadLetterEntry",
            fields=[
                *_timestamps(),
                _uuid_id(),
                (
                    "source_event_id",
                    models.CharField(
                        db_index=True, help_text="Stripe Event ID (evt_xxx)", max_length=255
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("error_message", models.TextField(blank=True, default="")),
                ("error_code", models.CharField(blank=True, default="", max_length=100)),
                ("payload", models.JSONField(default=dict)),
                ("retry_count", models.PositiveIntegerField(default=0)),
                (
                    "requires_manual_review",
                    models.BooleanField(db_index=True, default=False),
                ),
                ("last_attempt_at", models.DateTimeField(blank=True, null=True)),
                (
                    "resolved_at",
                    models.DateTimeField(blank=True, db_index=True, null=True),
                ),
            ],
            options={
                "verbose_name": "Dead Letter Entry",
                "verbose_name_plural": "Dead Letter Entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["resolved_at", "requires_manual_review"],
                        name="dlq_open_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                *_timestamps(),
                _uuid_id(),
                ("started_at", models.DateTimeField(db_index=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                (
                    "trigger",
                    models.CharField(
                        choices=[
                            ("schedule", "Celery Beat"),
                            ("cron", "External Scheduler"),
                            ("manual", "Manual"),
                        ],
                        default="schedule",
                        max_length=20,
                    ),
                ),
                ("window_start", models.DateTimeField()),
                ("window_end", models.DateTimeField()),
                ("events_scanned", models.PositiveIntegerField(default=0)),
                ("already_recorded", models.PositiveIntegerField(default=0)),
                ("missing_found", models.PositiveIntegerField(default=0)),
                ("applied", models.PositiveIntegerField(default=0)),
                ("skipped", models.PositiveIntegerField(default=0)),
                ("failed", models.PositiveIntegerField(default=0)),
                ("error_message", models.TextField(blank=True, default="")),
            ],
            options={
                "verbose_name": "Reconciliation Run",
                "verbose_name_plural": "Reconciliation Runs",
                "ordering": ["-started_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentEvent",
            fields=[
                *_timestamps(),
                _uuid_id(),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("intent_succeeded", "Payment Intent Succeeded"),
                            ("charge_succeeded", "Charge Succeeded"),
                            ("checkout_completed", "Checkout Completed"),
                            ("invoice_paid", "Invoice Paid"),
                            ("refund", "Refund"),
                            ("dispute", "Dispute"),
                            ("subscription", "Subscription Change"),
                            ("ignored", "Ignored"),
                        ],
                        db_index=True,
                        default="ignored",
                        max_length=30,
                    ),
                ),
                (
                    "occurred_at",
                    models.DateTimeField(help_text="When the event happened at Stripe"),
                ),
                ("amount_cents", models.BigIntegerField(blank=True, null=True)),
                ("currency", models.CharField(blank=True, default="", max_length=3)),
                (
                    "source_object_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Charge, intent, session, invoice or subscription id",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "payment_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Canonical id of the underlying economic payment",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "customer_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Stripe Customer ID (cus_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(
                        default=dict, help_text="Full event payload from Stripe (JSON)"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                (
                    "attempts",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
                (
                    "outcome",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Effects applied, or the reason the event was skipped",
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("webhook", "Webhook"),
                            ("reconciliation", "Reconciliation Sweep"),
                            ("replay", "Dead-Letter Replay"),
                        ],
                        default="webhook",
                        max_length=20,
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_events",
                        to="patients.clinic",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_events",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Event",
                "verbose_name_plural": "Payment Events",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(
                        fields=["payment_reference", "status"],
                        name="payment_event_ref_idx",
                    ),
                    models.Index(
                        fields=["patient", "kind", "status"],
                        name="payment_event_patient_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                *_timestamps(),
                _uuid_id(),
                (
                    "stripe_subscription_id",
                    models.CharField(
                        help_text="Stripe Subscription ID (sub_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe Customer ID (cus_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("active", "Active"),
                            ("past_due", "Past Due"),
                            ("paused", "Paused"),
                            ("canceled", "Canceled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="active",
                        help_text="Current status of the subscription (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("amount_cents", models.PositiveBigIntegerField(default=0)),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "interval",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe recurring interval: day, week, month or year",
                        max_length=10,
                    ),
                ),
                ("interval_count", models.PositiveSmallIntegerField(default=1)),
                (
                    "billing_interval",
                    models.CharField(
                        choices=[
                            ("monthly", "Monthly"),
                            ("quarterly", "Quarterly"),
                            ("semiannual", "Semiannual"),
                            ("annual", "Annual"),
                        ],
                        default="monthly",
                        max_length=12,
                    ),
                ),
                ("current_period_start", models.DateTimeField(blank=True, null=True)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                ("next_billing_date", models.DateTimeField(blank=True, null=True)),
                ("cancel_at_period_end", models.BooleanField(default=False)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="patients.clinic",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["patient", "status"], name="subscription_patient_idx"
                    )
                ],
            },
        ),
    ]
