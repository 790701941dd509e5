from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models

import escrow.models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Escrow",
            fields=[
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.CharField(
                        default=escrow.models.generate_escrow_id,
                        editable=False,
                        help_text="Escrow identifier (esc_ + 16 hex characters)",
                        max_length=20,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "creator",
                    models.CharField(
                        db_index=True,
                        help_text="Account identifier of the participant who funded the escrow",
                        max_length=64,
                    ),
                ),
                (
                    "counterparty",
                    models.CharField(
                        db_index=True,
                        help_text="Account identifier of the participant paid on release",
                        max_length=64,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=6,
                        help_text="Amount locked from the creator's balance",
                        max_digits=20,
                    ),
                ),
                (
                    "commission",
                    models.DecimalField(
                        decimal_places=6,
                        help_text="Total commission withheld from the amount",
                        max_digits=20,
                    ),
                ),
                (
                    "referrer",
                    models.CharField(
                        blank=True,
                        help_text="Account identifier paid the referral share of the commission",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "referral_commission",
                    models.DecimalField(
                        decimal_places=6,
                        default=Decimal("0"),
                        help_text="Part of the commission paid to the referrer",
                        max_digits=20,
                    ),
                ),
                (
                    "description",
                    models.TextField(help_text="What the counterparty is being paid for"),
                ),
                (
                    "timeout_hours",
                    models.PositiveIntegerField(
                        help_text="Hours until the escrow is auto-refunded",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("funded", "Funded"),
                            ("completed", "Completed"),
                            ("disputed", "Disputed"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="funded",
                        help_text="Current state of the escrow (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="Timestamp when this escrow was funded",
                    ),
                ),
                (
                    "auto_release_at",
                    models.DateTimeField(
                        help_text="Deadline after which the escrow is refunded to the creator",
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("disputed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "auto_release_at"],
                        name="escrow_sweep_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount__gt=0),
                        name="escrow_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(referral_commission__gte=0)
                        & models.Q(referral_commission__lte=models.F("commission")),
                        name="escrow_referral_commission_within_commission",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(commission__gte=0)
                        & models.Q(commission__lte=models.F("amount")),
                        name="escrow_commission_within_amount",
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(creator=models.F("counterparty")),
                        name="escrow_distinct_participants",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("completed", "Completed"),
                            ("released", "Released"),
                            ("disputed", "Disputed"),
                            ("refunded", "Refunded"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "actor",
                    models.CharField(
                        blank=True,
                        help_text="Account identifier of the participant, None for the system",
                        max_length=64,
                        null=True,
                    ),
                ),
                ("note", models.TextField(blank=True, default="")),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "escrow",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="escrow.escrow",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="EscrowStats",
            fields=[
                (
                    "id",
                    models.PositiveSmallIntegerField(
                        default=1,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("total_created", models.PositiveBigIntegerField(default=0)),
                ("total_released", models.PositiveBigIntegerField(default=0)),
                ("total_disputed", models.PositiveBigIntegerField(default=0)),
                (
                    "total_volume",
                    models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24),
                ),
                (
                    "total_commission",
                    models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24),
                ),
            ],
            options={
                "verbose_name_plural": "escrow stats",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(id=1),
                        name="escrow_stats_singleton",
                    ),
                ],
            },
        ),
    ]
