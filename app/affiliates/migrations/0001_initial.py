import uuid

import django.db.models.deletion
import django.utils.timezone
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


def _auto_id():
    return (
        "id",
        models.BigAutoField(
            auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
        ),
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("patients", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="CommissionPlan",
            fields=[
                _auto_id(),
                *_timestamps(),
                ("name", models.CharField(max_length=255)),
                (
                    "plan_type",
                    models.CharField(
                        choices=[("flat", "Flat Amount"), ("percent", "Percentage")],
                        default="percent",
                        max_length=10,
                    ),
                ),
                (
                    "flat_amount_cents",
                    models.PositiveIntegerField(
                        default=0, help_text="Flat commission in cents"
                    ),
                ),
                (
                    "percent_bps",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Percentage commission in basis points (1000 = 10%)",
                    ),
                ),
                ("initial_flat_amount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("initial_percent_bps", models.PositiveIntegerField(blank=True, null=True)),
                ("recurring_flat_amount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("recurring_percent_bps", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "applies_to",
                    models.CharField(
                        choices=[
                            ("first_payment_only", "First Payment Only"),
                            ("all_payments", "All Payments"),
                        ],
                        default="first_payment_only",
                        max_length=20,
                    ),
                ),
                (
                    "recurring_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Pay commission on recurring subscription payments",
                    ),
                ),
                (
                    "hold_days",
                    models.PositiveIntegerField(
                        default=30, help_text="Days before a pending commission matures"
                    ),
                ),
                (
                    "clawback_enabled",
                    models.BooleanField(
                        default=True,
                        help_text="Reverse commissions when the payment is refunded or disputed",
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_plans",
                        to="patients.clinic",
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission Plan",
                "verbose_name_plural": "Commission Plans",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Affiliate",
            fields=[
                _auto_id(),
                *_timestamps(),
                ("display_name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "ref_code",
                    models.CharField(
                        help_text="Referral code carried in links and payment metadata",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("paused", "Paused"),
                            ("suspended", "Suspended"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="affiliates",
                        to="patients.clinic",
                    ),
                ),
                (
                    "commission_plan",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="affiliates",
                        to="affiliates.commissionplan",
                    ),
                ),
            ],
            options={
                "verbose_name": "Affiliate",
                "verbose_name_plural": "Affiliates",
                "ordering": ["display_name"],
            },
        ),
        migrations.CreateModel(
            name="ReferralTouch",
            fields=[
                _auto_id(),
                *_timestamps(),
                (
                    "ip_hash",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Salted SHA-256 of the visitor IP",
                        max_length=64,
                    ),
                ),
                ("touched_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "affiliate",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="touches",
                        to="affiliates.affiliate",
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="referral_touches",
                        to="patients.clinic",
                    ),
                ),
                (
                    "converted_patient",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="referral_touches",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Referral Touch",
                "verbose_name_plural": "Referral Touches",
                "ordering": ["-touched_at"],
                "indexes": [
                    models.Index(
                        fields=["affiliate", "ip_hash", "touched_at"],
                        name="touch_affiliate_ip_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ReferralAttribution",
            fields=[
                _auto_id(),
                *_timestamps(),
                (
                    "attributed_via",
                    models.CharField(
                        choices=[
                            ("touch", "Referral Touch"),
                            ("ref_code", "Ref Code in Payment Metadata"),
                            ("manual", "Manual"),
                        ],
                        default="touch",
                        max_length=20,
                    ),
                ),
                (
                    "affiliate",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="attributions",
                        to="affiliates.affiliate",
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="referral_attributions",
                        to="patients.clinic",
                    ),
                ),
                (
                    "patient",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="referral_attribution",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Referral Attribution",
                "verbose_name_plural": "Referral Attributions",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="CommissionEvent",
            fields=[
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
                *_timestamps(),
                (
                    "source_event_id",
                    models.CharField(
                        help_text="Stripe event ID (evt_xxx) that produced this commission",
                        max_length=255,
                    ),
                ),
                (
                    "payment_reference",
                    models.CharField(
                        db_index=True,
                        help_text="Canonical payment id (payment intent, else charge, else object)",
                        max_length=255,
                    ),
                ),
                (
                    "source_object_id",
                    models.CharField(
                        db_index=True,
                        help_text="ID of the Stripe object the event carried",
                        max_length=255,
                    ),
                ),
                (
                    "charge_id",
                    models.CharField(blank=True, db_index=True, max_length=255, null=True),
                ),
                (
                    "event_amount_cents",
                    models.PositiveBigIntegerField(help_text="Payment amount in cents"),
                ),
                (
                    "commission_amount_cents",
                    models.PositiveBigIntegerField(help_text="Commission amount in cents"),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("is_first_payment", models.BooleanField(default=False)),
                ("is_recurring", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("reversed", "Reversed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("risk_score", models.PositiveSmallIntegerField(default=0)),
                (
                    "fraud_hold",
                    models.BooleanField(
                        default=False,
                        help_text="Held for manual fraud review; never auto-approved",
                    ),
                ),
                ("hold_until", models.DateTimeField(blank=True, null=True)),
                ("occurred_at", models.DateTimeField(help_text="When the payment happened")),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("reversed_at", models.DateTimeField(blank=True, null=True)),
                ("reversal_reason", models.CharField(blank=True, default="", max_length=20)),
                ("reversal_event_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "affiliate",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_events",
                        to="affiliates.affiliate",
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_events",
                        to="patients.clinic",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission_events",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission Event",
                "verbose_name_plural": "Commission Events",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(
                        fields=["affiliate", "occurred_at"],
                        name="commission_affiliate_time_idx",
                    ),
                    models.Index(
                        fields=["status", "hold_until"],
                        name="commission_status_hold_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("affiliate", "source_event_id"),
                        name="commission_unique_affiliate_event",
                    ),
                    models.UniqueConstraint(
                        fields=("affiliate", "payment_reference"),
                        name="commission_unique_affiliate_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionLedgerLine",
            fields=[
                _auto_id(),
                *_timestamps(),
                (
                    "kind",
                    models.CharField(
                        choices=[("accrual", "Accrual"), ("reversal", "Reversal")],
                        max_length=10,
                    ),
                ),
                (
                    "amount_cents",
                    models.BigIntegerField(
                        help_text="Signed amount in cents; reversals are negative"
                    ),
                ),
                (
                    "source_event_id",
                    models.CharField(
                        help_text="Stripe event ID that caused this line", max_length=255
                    ),
                ),
                (
                    "commission_event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_lines",
                        to="affiliates.commissionevent",
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission Ledger Line",
                "verbose_name_plural": "Commission Ledger Lines",
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("commission_event", "kind"),
                        name="ledger_unique_event_kind",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AffiliateFraudConfig",
            fields=[
                _auto_id(),
                *_timestamps(),
                ("enabled", models.BooleanField(default=True)),
                ("max_conversions_per_day", models.PositiveIntegerField(default=50)),
                ("max_conversions_per_hour", models.PositiveIntegerField(default=10)),
                ("velocity_spike_multiplier", models.FloatField(default=3.0)),
                ("max_conversions_per_ip", models.PositiveIntegerField(default=3)),
                (
                    "min_ip_risk_score",
                    models.PositiveSmallIntegerField(
                        default=75,
                        help_text="Provider risk score at or above which an alert is raised",
                    ),
                ),
                ("block_proxy_vpn", models.BooleanField(default=False)),
                ("block_datacenter", models.BooleanField(default=True)),
                ("max_refund_rate_pct", models.PositiveSmallIntegerField(default=20)),
                (
                    "min_refunds_for_alert",
                    models.PositiveIntegerField(
                        default=5,
                        help_text="Minimum commissions in the window before the refund rate is judged",
                    ),
                ),
                ("enable_self_referral_check", models.BooleanField(default=True)),
                ("auto_suspend_on_critical", models.BooleanField(default=False)),
                (
                    "clinic",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="fraud_config",
                        to="patients.clinic",
                    ),
                ),
            ],
            options={
                "verbose_name": "Affiliate Fraud Config",
                "verbose_name_plural": "Affiliate Fraud Configs",
            },
        ),
        migrations.CreateModel(
            name="FraudAlert",
            fields=[
                _auto_id(),
                *_timestamps(),
                (
                    "alert_type",
                    models.CharField(
                        choices=[
                            ("self_referral", "Self Referral"),
                            ("duplicate_ip", "Duplicate IP"),
                            ("velocity_spike", "Velocity Spike"),
                            ("suspicious_pattern", "Suspicious Pattern"),
                            ("refund_abuse", "Refund Abuse"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "severity",
                    models.CharField(
                        choices=[
                            ("low", "Low"),
                            ("medium", "Medium"),
                            ("high", "High"),
                            ("critical", "Critical"),
                        ],
                        max_length=10,
                    ),
                ),
                ("description", models.TextField()),
                ("evidence", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("resolved", "Resolved")],
                        db_index=True,
                        default="open",
                        max_length=10,
                    ),
                ),
                ("risk_score", models.PositiveSmallIntegerField(default=0)),
                ("affected_amount_cents", models.PositiveBigIntegerField(blank=True, null=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "affiliate",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="fraud_alerts",
                        to="affiliates.affiliate",
                    ),
                ),
                (
                    "clinic",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="fraud_alerts",
                        to="patients.clinic",
                    ),
                ),
                (
                    "commission_event",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="fraud_alerts",
                        to="affiliates.commissionevent",
                    ),
                ),
            ],
            options={
                "verbose_name": "Fraud Alert",
                "verbose_name_plural": "Fraud Alerts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["affiliate", "status"], name="fraud_alert_affiliate_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="IpIntelCacheEntry",
            fields=[
                _auto_id(),
                *_timestamps(),
                ("ip_hash", models.CharField(max_length=64, unique=True)),
                ("is_proxy", models.BooleanField(default=False)),
                ("is_vpn", models.BooleanField(default=False)),
                ("is_tor", models.BooleanField(default=False)),
                ("is_datacenter", models.BooleanField(default=False)),
                ("is_bot", models.BooleanField(default=False)),
                ("risk_score", models.PositiveSmallIntegerField(default=0)),
                ("fraud_score", models.PositiveSmallIntegerField(default=0)),
                ("country_code", models.CharField(blank=True, default="", max_length=2)),
                ("isp", models.CharField(blank=True, default="", max_length=255)),
                (
                    "provider",
                    models.CharField(
                        choices=[
                            ("ipqualityscore", "IPQualityScore"),
                            ("heuristic", "Local Heuristic"),
                        ],
                        default="heuristic",
                        max_length=20,
                    ),
                ),
                ("expires_at", models.DateTimeField(db_index=True)),
            ],
            options={
                "verbose_name": "IP Intel Cache Entry",
                "verbose_name_plural": "IP Intel Cache Entries",
            },
        ),
    ]
