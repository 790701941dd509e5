"""Ledger helpers shared by escrow tests."""

import uuid
from decimal import Decimal

from ledger.services import LedgerService


def open_account(owner_id, balance=Decimal("0"), **kwargs):
    """Open a participant account and deposit ``balance`` into it."""
    account = LedgerService.open_user_account(owner_id, **kwargs)
    if balance:
        LedgerService.deposit(owner_id, balance, idempotency_key=f"seed-{uuid.uuid4()}")
    return account


def balance_of(owner_id):
    """Current balance of a participant account."""
    return LedgerService.get_user_account(owner_id).get_balance()
