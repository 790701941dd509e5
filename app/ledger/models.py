"""
Ledger models for double-entry bookkeeping.

This module defines the core models for the balance ledger:
- LedgerAccount: Holds monetary value (participant balances, escrow pool, funding)
- LedgerEntry: Records movements between accounts

Every entry debits one account and credits another, so the books always
balance. Escrowed funds sit in the platform escrow pool between the
participant debit at creation and the payout credits at settlement; the
house share of the commission is simply never paid out of the pool.

Usage:
    from ledger.models import LedgerAccount, LedgerEntry, AccountType, EntryType

    pool = LedgerAccount.objects.create(type=AccountType.ESCROW_POOL)
    balance = pool.get_balance()  # Decimal
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import Q, Sum

from core.model_mixins import UUIDPrimaryKeyMixin


class AccountType(models.TextChoices):
    """
    Types of ledger accounts.

    Values:
        USER_BALANCE: A participant's spendable balance (owner_id = account id)
        ESCROW_POOL: Platform pool holding locked escrow funds and house commission
        EXTERNAL_FUNDING: Money entering the system (deposits); may go negative
    """

    USER_BALANCE = "user_balance", "User Balance"
    ESCROW_POOL = "escrow_pool", "Escrow Pool"
    EXTERNAL_FUNDING = "external_funding", "External Funding"


class EntryType(models.TextChoices):
    """
    Types of ledger entries.

    Values:
        DEPOSIT: Funds added to a participant balance from outside
        ESCROW_LOCK: Participant balance moved into the escrow pool
        ESCROW_PAYOUT: Escrow pool paid out to a participant (release,
            refund, referral commission, failed-funding compensation)
    """

    DEPOSIT = "deposit", "Deposit"
    ESCROW_LOCK = "escrow_lock", "Escrow Lock"
    ESCROW_PAYOUT = "escrow_payout", "Escrow Payout"


class LedgerAccount(UUIDPrimaryKeyMixin, models.Model):
    """
    A ledger account that holds monetary value.

    Participant accounts are keyed by ``owner_id``, the opaque account
    identifier handed out by the identity layer (e.g. ``ag_3f9c...``).
    Platform accounts have no owner.

    Fields:
        id: UUID primary key (from UUIDPrimaryKeyMixin)
        type: Account category
        owner_id: Participant account identifier (None for platform accounts)
        currency: ISO 4217 currency code (default: 'usd')
        allow_negative: Whether balance can go negative (external funding only)
        is_active: Whether the account accepts new entries
        referral_code: Code other participants quote to name this account as referrer
        referred_by: Owner id of the participant who referred this account
        created_at: Timestamp when account was created

    Constraints:
        - Unique combination of (type, owner_id, currency)
        - Unique referral_code
        - An account is never its own referrer
    """

    type = models.CharField(
        max_length=50,
        choices=AccountType.choices,
        help_text="Category of this account",
    )
    owner_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Participant account identifier that owns this account",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )
    allow_negative = models.BooleanField(
        default=False,
        help_text="Whether this account can have a negative balance",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this account is active",
    )
    referral_code = models.CharField(
        max_length=32,
        null=True,
        blank=True,
        unique=True,
        help_text="Referral code that resolves to this account",
    )
    referred_by = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Owner id of the participant who referred this account",
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this account was created",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["type", "owner_id", "currency"],
                name="unique_account_per_owner",
            ),
            models.CheckConstraint(
                condition=~Q(referred_by=models.F("owner_id")),
                name="ledger_account_not_self_referred",
            ),
        ]
        indexes = [
            models.Index(fields=["type", "currency"], name="ledger_acct_type_cur_idx"),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        if self.owner_id:
            return f"{self.get_type_display()} ({self.owner_id})"
        return self.get_type_display()

    def get_balance(self) -> Decimal:
        """
        Compute current balance from entries.

        Balance is the sum of all credits to this account minus the
        sum of all debits from it.

        Returns:
            Balance as a Decimal (negative only if allow_negative is True)
        """
        credits = self.credit_entries.aggregate(total=Sum("amount"))["total"]
        debits = self.debit_entries.aggregate(total=Sum("amount"))["total"]
        return (credits or Decimal("0")) - (debits or Decimal("0"))


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    A ledger entry recording movement of money between accounts.

    Entries are immutable once created. Each one carries a unique
    idempotency key, so replaying the same movement returns the
    existing entry instead of moving the money twice.

    Fields:
        id: UUID primary key (from UUIDPrimaryKeyMixin)
        created_at: Timestamp when entry was recorded
        debit_account: Account money is taken from
        credit_account: Account money is added to
        amount: Amount moved (always positive, six fractional digits)
        currency: ISO 4217 currency code
        entry_type: Category of this entry
        reference_id: Identifier of related business entity (e.g. escrow id)
        reference_type: Type of related entity (e.g. 'escrow')
        description: Human-readable description
        metadata: Arbitrary JSON data
        created_by: Identifier of service that created this
        idempotency_key: Unique key to prevent duplicate entries
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this entry was recorded",
    )

    debit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="debit_entries",
        help_text="Account money is taken from",
    )
    credit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="credit_entries",
        help_text="Account money is added to",
    )
    amount = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        help_text="Amount moved (always positive)",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )

    entry_type = models.CharField(
        max_length=50,
        choices=EntryType.choices,
        help_text="Category of this entry",
    )
    reference_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Identifier of related business entity (e.g., escrow id)",
    )
    reference_type = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Type of related entity (e.g., 'escrow')",
    )

    description = models.TextField(
        null=True,
        blank=True,
        help_text="Human-readable description of this entry",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON data for extensibility",
    )

    created_by = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Identifier of service that created this entry",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["reference_type", "reference_id"],
                name="ledger_entry_reference_idx",
            ),
            models.Index(fields=["entry_type"], name="ledger_entry_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="ledger_entry_amount_positive",
            )
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return f"{self.get_entry_type_display()}: {self.amount}"
