"""
Escrow, EscrowEvent and EscrowStats models.

Escrow is the central entity: an amount locked from a creator's balance
for a counterparty, with the commission split fixed at creation. Status
changes go through django-fsm transitions; the store persists them with a
guarded ``UPDATE ... WHERE status IN (...)`` so that two racing callers
can never both win.

Usage:
    from escrow.models import Escrow, EscrowEvent, EscrowStats
    from escrow.state_machines import EscrowStatus

    escrow = Escrow.objects.get(id="esc_0123456789abcdef")
    escrow.net_to_counterparty   # amount - commission
    escrow.house_commission      # commission - referral_commission

    EscrowStats.load().total_volume
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel

from escrow.state_machines.states import (
    OPEN_STATUSES,
    EscrowEventKind,
    EscrowStatus,
)


def generate_escrow_id() -> str:
    """Return a new escrow identifier: ``esc_`` plus 16 lowercase hex digits."""
    return f"esc_{uuid.uuid4().hex[:16]}"


def _deadline_passed(instance: Escrow) -> bool:
    return instance.is_expired()


class Escrow(BaseModel):
    """
    An amount held between a creator and a counterparty.

    State Flow:
        FUNDED -> COMPLETED -> RELEASED
        FUNDED -> RELEASED
        FUNDED/COMPLETED -> DISPUTED
        FUNDED/COMPLETED -> REFUNDED (after auto_release_at, system only)

    Fields:
        id: ``esc_`` + 16 hex characters, assigned at creation
        creator: Account identifier that funded the escrow
        counterparty: Account identifier paid on release
        amount: Locked amount (immutable)
        commission: amount × commission rate (immutable)
        referrer: Optional account paid the referral share
        referral_commission: commission × referral rate, zero without referrer
        description: What the counterparty is being paid for
        timeout_hours: Clamped timeout used to compute auto_release_at
        status: Current state (managed by FSM)
        auto_release_at: Deadline after which the sweeper refunds the creator
        *_at timestamps: Set once, by their own transition only
    """

    id = models.CharField(
        primary_key=True,
        max_length=20,
        default=generate_escrow_id,
        editable=False,
        help_text="Escrow identifier (esc_ + 16 hex characters)",
    )
    creator = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Account identifier of the participant who funded the escrow",
    )
    counterparty = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Account identifier of the participant paid on release",
    )
    amount = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        help_text="Amount locked from the creator's balance",
    )
    commission = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        help_text="Total commission withheld from the amount",
    )
    referrer = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Account identifier paid the referral share of the commission",
    )
    referral_commission = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        default=Decimal("0"),
        help_text="Part of the commission paid to the referrer",
    )
    description = models.TextField(
        help_text="What the counterparty is being paid for",
    )
    timeout_hours = models.PositiveIntegerField(
        help_text="Hours until the escrow is auto-refunded",
    )

    status = FSMField(
        default=EscrowStatus.FUNDED,
        choices=EscrowStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current state of the escrow (managed by FSM)",
    )

    # Overrides BaseModel.created_at so that auto_release_at can be
    # computed from the very same instant
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        editable=False,
        help_text="Timestamp when this escrow was funded",
    )
    auto_release_at = models.DateTimeField(
        help_text="Deadline after which the escrow is refunded to the creator",
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "auto_release_at"], name="escrow_sweep_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="escrow_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(referral_commission__gte=0)
                & Q(referral_commission__lte=F("commission")),
                name="escrow_referral_commission_within_commission",
            ),
            models.CheckConstraint(
                condition=Q(commission__gte=0) & Q(commission__lte=F("amount")),
                name="escrow_commission_within_amount",
            ),
            models.CheckConstraint(
                condition=~Q(creator=F("counterparty")),
                name="escrow_distinct_participants",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        return f"Escrow({self.id}, {self.status}, {self.amount})"

    # ==========================================================================
    # Derived values
    # ==========================================================================

    @property
    def net_to_counterparty(self) -> Decimal:
        """What the counterparty receives on release (and the creator on refund)."""
        return self.amount - self.commission

    @property
    def house_commission(self) -> Decimal:
        """Commission kept by the platform after the referral share."""
        return self.commission - self.referral_commission

    def is_participant(self, actor: str | None) -> bool:
        return actor is not None and actor in (self.creator, self.counterparty)

    def is_expired(self, now=None) -> bool:
        """Whether the auto-release deadline has been reached."""
        return (now or timezone.now()) >= self.auto_release_at

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================
    # These mutate the in-memory instance only. Persistence goes through
    # EscrowStore.transition(), which re-checks the source status in SQL.

    @transition(
        field=status,
        source=EscrowStatus.FUNDED,
        target=EscrowStatus.COMPLETED,
    )
    def complete(self, at=None):
        """
        Counterparty marks the task done.

        Transition: FUNDED -> COMPLETED
        """
        self.completed_at = at or timezone.now()

    @transition(
        field=status,
        source=list(OPEN_STATUSES),
        target=EscrowStatus.RELEASED,
    )
    def release(self, at=None):
        """
        Creator releases the funds to the counterparty.

        Transition: FUNDED/COMPLETED -> RELEASED
        """
        self.released_at = at or timezone.now()

    @transition(
        field=status,
        source=list(OPEN_STATUSES),
        target=EscrowStatus.DISPUTED,
    )
    def dispute(self, at=None):
        """
        Either participant freezes the escrow.

        Transition: FUNDED/COMPLETED -> DISPUTED
        """
        self.disputed_at = at or timezone.now()

    @transition(
        field=status,
        source=list(OPEN_STATUSES),
        target=EscrowStatus.REFUNDED,
        conditions=[_deadline_passed],
    )
    def refund(self, at=None):
        """
        Timeout refund to the creator, run by the sweeper.

        Transition: FUNDED/COMPLETED -> REFUNDED (only once expired)
        """
        self.refunded_at = at or timezone.now()


class EscrowEvent(models.Model):
    """
    One entry in an escrow's append-only audit log.

    ``actor`` is None for events produced by the system (sweeper).
    Events are ordered by ``created_at`` then by insertion sequence.
    """

    escrow = models.ForeignKey(
        Escrow,
        on_delete=models.PROTECT,
        related_name="events",
    )
    kind = models.CharField(
        max_length=20,
        choices=EscrowEventKind.choices,
    )
    actor = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Account identifier of the participant, None for the system",
    )
    note = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
    )

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.escrow_id} {self.kind} by {self.actor or 'system'}"


class EscrowStats(models.Model):
    """
    Running totals across all escrows.

    A single row with primary key 1, seeded by a data migration and only
    ever changed with ``F()`` increments inside the triggering transaction.
    """

    SINGLETON_ID = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID)
    total_created = models.PositiveBigIntegerField(default=0)
    total_released = models.PositiveBigIntegerField(default=0)
    total_disputed = models.PositiveBigIntegerField(default=0)
    total_volume = models.DecimalField(max_digits=24, decimal_places=6, default=Decimal("0"))
    total_commission = models.DecimalField(
        max_digits=24,
        decimal_places=6,
        default=Decimal("0"),
    )

    class Meta:
        verbose_name_plural = "escrow stats"
        constraints = [
            models.CheckConstraint(
                condition=Q(id=1),
                name="escrow_stats_singleton",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowStats(created={self.total_created}, volume={self.total_volume})"

    @classmethod
    def load(cls) -> EscrowStats:
        """Return the singleton row, creating it if the seed is missing."""
        stats, _ = cls.objects.get_or_create(pk=cls.SINGLETON_ID)
        return stats
