"""
Protocol definitions for the escrow service's external collaborators.

The escrow core never touches participant balances or referral codes
directly. It talks to two collaborators through these interfaces:

    BalanceLedger: Account lookup plus debit/credit primitives
    ReferralResolver: Referral code → account identifier

Default implementations backed by the ``ledger`` app live in
``escrow.adapters``; tests substitute fakes or mocks.

Usage:
    from escrow.protocols import BalanceLedger

    class InMemoryLedger:
        def lookup(self, account_id): ...
        def debit(self, account_id, amount, reason, idempotency_key): ...
        def credit(self, account_id, amount, reason, idempotency_key): ...

    ledger: BalanceLedger = InMemoryLedger()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal


@dataclass(frozen=True)
class AccountSnapshot:
    """
    What the escrow core needs to know about a participant account.

    Attributes:
        account_id: The participant's account identifier
        balance: Current spendable balance
        referred_by: Account identifier of the participant's default referrer
        referral_code: The participant's own referral code
    """

    account_id: str
    balance: Decimal
    referred_by: str | None = None
    referral_code: str | None = None


@runtime_checkable
class BalanceLedger(Protocol):
    """
    Protocol for the balance ledger escrow funds move through.

    Both movements are atomic and independently durable. Replaying a
    movement with the same idempotency key must not move funds twice.
    Any failure other than an insufficient balance is raised.

    An implementation whose movements join the caller's database
    transaction sets ``transactional = True``.
    """

    def lookup(self, account_id: str) -> AccountSnapshot | None:
        """Return the account's snapshot, or None if it does not exist."""
        ...

    def debit(
        self,
        account_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> bool:
        """
        Take ``amount`` from the account.

        Returns:
            True on success, False if the balance is insufficient
        """
        ...

    def credit(
        self,
        account_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> None:
        """Add ``amount`` to the account."""
        ...


@runtime_checkable
class ReferralResolver(Protocol):
    """Protocol mapping a referral code to the referring account."""

    def resolve_by_code(self, code: str) -> str | None:
        """Return the account identifier owning ``code``, or None."""
        ...
