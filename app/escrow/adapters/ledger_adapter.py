"""
Adapters binding the escrow protocols to the ``ledger`` app.

LedgerBalanceAdapter implements BalanceLedger on top of LedgerService:
a debit moves funds from the participant into the platform escrow pool,
a credit pays them back out of it. LedgerReferralResolver looks referral
codes up on ledger accounts.

Idempotency keys from the escrow service have the form
``<escrow_id>:<purpose>``; the part before the colon is recorded as the
entry's reference so all movements of one escrow can be audited together.

Usage:
    from escrow.adapters import LedgerBalanceAdapter

    ledger = LedgerBalanceAdapter()
    if not ledger.debit("ag_alice", Decimal("10"), "escrow_lock: esc_x", "esc_x:lock"):
        ...  # insufficient balance
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ledger.exceptions import InsufficientBalance
from ledger.services import LedgerService

from escrow.protocols import AccountSnapshot

if TYPE_CHECKING:
    from decimal import Decimal

logger = logging.getLogger(__name__)


def _reference_from_key(idempotency_key: str) -> str | None:
    reference, sep, _ = idempotency_key.partition(":")
    return reference if sep else None


class LedgerBalanceAdapter:
    """BalanceLedger backed by the double-entry ledger app."""

    # Entries are written in the caller's database transaction
    transactional = True

    def lookup(self, account_id: str) -> AccountSnapshot | None:
        account = LedgerService.get_user_account(account_id)
        if account is None or not account.is_active:
            return None
        return AccountSnapshot(
            account_id=account_id,
            balance=account.get_balance(),
            referred_by=account.referred_by,
            referral_code=account.referral_code,
        )

    def debit(
        self,
        account_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> bool:
        """
        Lock ``amount`` from the participant into the escrow pool.

        Returns False on insufficient balance. Every other ledger error
        propagates.
        """
        try:
            LedgerService.lock_funds(
                account_id,
                amount,
                idempotency_key=idempotency_key,
                reference_id=_reference_from_key(idempotency_key),
                description=reason,
            )
        except InsufficientBalance as e:
            logger.info(
                "Ledger debit refused: insufficient balance",
                extra={
                    "account_id": account_id,
                    "amount": str(amount),
                    "available": str(e.available),
                    "idempotency_key": idempotency_key,
                },
            )
            return False
        return True

    def credit(
        self,
        account_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> None:
        """Pay ``amount`` out of the escrow pool to the participant."""
        LedgerService.pay_out(
            account_id,
            amount,
            idempotency_key=idempotency_key,
            reference_id=_reference_from_key(idempotency_key),
            description=reason,
        )


class LedgerReferralResolver:
    """ReferralResolver backed by ledger account referral codes."""

    def resolve_by_code(self, code: str) -> str | None:
        account = LedgerService.find_by_referral_code(code)
        return account.owner_id if account is not None else None
