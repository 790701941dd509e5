"""
Data types for ledger operations.

Types:
    Money: Represents a monetary amount with currency
    RecordEntryParams: Parameters for recording a ledger entry

Usage:
    from ledger.types import Money, RecordEntryParams

    amount = Money(amount=Decimal("50"), currency="usd")
    print(amount)  # "50.000000 USD"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# Six fractional digits, the precision every balance is kept in
AMOUNT_QUANTUM = Decimal("0.000001")


@dataclass
class Money:
    """
    Represents a monetary amount.

    Amounts are Decimals with six fractional digits so that small
    commissions (1% of 0.10) stay exact.

    Attributes:
        amount: The amount (may be negative for the external funding account)
        currency: ISO 4217 currency code (default: 'usd')
    """

    amount: Decimal
    currency: str = "usd"

    def __str__(self) -> str:
        """Format as amount with currency code."""
        return f"{self.amount:.6f} {self.currency.upper()}"


@dataclass
class RecordEntryParams:
    """
    Parameters for recording a ledger entry.

    Every entry debits one account and credits another.

    Required Attributes:
        debit_account_id: UUID of the account being debited (money out)
        credit_account_id: UUID of the account being credited (money in)
        amount: Amount to move (must be positive)
        entry_type: Type of entry (e.g., 'escrow_lock', 'escrow_payout')
        idempotency_key: Unique key to prevent duplicate entries

    Optional Attributes:
        reference_id: Identifier of the related business entity (e.g., escrow id)
        reference_type: Type of related entity (e.g., 'escrow')
        description: Human-readable description
        metadata: Arbitrary JSON-serializable data
        created_by: Identifier of the service creating the entry

    Example:
        params = RecordEntryParams(
            debit_account_id=user_account.id,
            credit_account_id=pool.id,
            amount=Decimal("10"),
            entry_type=EntryType.ESCROW_LOCK,
            idempotency_key="esc_0123456789abcdef:lock",
            reference_type="escrow",
            reference_id="esc_0123456789abcdef",
        )
    """

    debit_account_id: uuid.UUID
    credit_account_id: uuid.UUID
    amount: Decimal
    entry_type: str
    idempotency_key: str

    reference_id: str | None = None
    reference_type: str | None = None
    description: str | None = None
    metadata: dict[str, Any] | None = field(default_factory=dict)
    created_by: str | None = None

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        self.amount = Decimal(self.amount).quantize(AMOUNT_QUANTUM)
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("debit_account_id and credit_account_id must be different")
