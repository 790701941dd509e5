"""
Funding saga for new escrows.

Creating an escrow spans two resources: the balance ledger (debit the
creator) and the escrow store (persist record, ``created`` event and
counters). The ledger is written first so that an escrow never exists
without its funds. If the store write then fails, the compensating
action ``refund_failed_funding`` credits the amount back.

Usage:
    from escrow.funding import fund_escrow

    escrow = fund_escrow(escrow, ledger=balance_ledger, store=EscrowStore())
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

from escrow.exceptions import (
    InsufficientFundsError,
    LedgerFailureError,
    PersistenceFailureError,
)
from escrow.state_machines.states import EscrowEventKind

if TYPE_CHECKING:
    from escrow.models import Escrow
    from escrow.protocols import BalanceLedger
    from escrow.store import EscrowStore

logger = logging.getLogger(__name__)


def fund_escrow(escrow: Escrow, *, ledger: BalanceLedger, store: EscrowStore) -> Escrow:
    """
    Debit the creator, then persist the new escrow.

    Args:
        escrow: Unsaved escrow with all fields computed
        ledger: Balance ledger to debit
        store: Escrow store to persist into

    Returns:
        The persisted escrow

    Raises:
        InsufficientFundsError: If the debit is refused (balance changed
            since the pre-check)
        LedgerFailureError: If the ledger itself fails during the debit
        PersistenceFailureError: If the store write fails; the debit has
            been compensated by then
    """
    context = {
        "escrow_id": escrow.id,
        "creator": escrow.creator,
        "amount": str(escrow.amount),
    }

    try:
        debited = ledger.debit(
            escrow.creator,
            escrow.amount,
            f"escrow_lock: {escrow.id}",
            f"{escrow.id}:lock",
        )
    except Exception as e:
        logger.error("Escrow funding debit failed", extra={**context, "error": str(e)}, exc_info=True)
        raise LedgerFailureError(details={"escrow_id": escrow.id}) from e

    if not debited:
        raise InsufficientFundsError(
            "Insufficient balance to fund this escrow",
            details={"escrow_id": escrow.id, "amount": str(escrow.amount)},
        )

    try:
        with transaction.atomic():
            store.put(escrow)
            store.append_event(
                escrow.id,
                EscrowEventKind.CREATED,
                escrow.creator,
                f'Escrow created: ${escrow.amount.normalize():f} for "{escrow.description}"',
                now=escrow.created_at,
            )
            store.bump_stats(total_created=1, total_volume=escrow.amount)
    except Exception as e:
        refund_failed_funding(escrow, ledger=ledger, cause=e)
        if isinstance(e, PersistenceFailureError):
            raise
        raise PersistenceFailureError(details={"escrow_id": escrow.id}) from e

    logger.info("Escrow funded", extra=context)
    return escrow


def refund_failed_funding(escrow: Escrow, *, ledger: BalanceLedger, cause: Exception | None = None) -> bool:
    """
    Compensate a funding debit whose escrow was never persisted.

    Credits the full amount back to the creator under its own idempotency
    key, so running it twice returns the money once.

    Returns:
        True if the credit went through. False means the funds are stuck in
        the escrow pool and need manual reconciliation.
    """
    context = {
        "escrow_id": escrow.id,
        "creator": escrow.creator,
        "amount": str(escrow.amount),
        "cause": str(cause) if cause else None,
    }
    try:
        ledger.credit(
            escrow.creator,
            escrow.amount,
            f"escrow_create_failed_refund: {escrow.id}",
            f"{escrow.id}:lock_refund",
        )
    except Exception as e:
        logger.critical(
            "Compensating refund failed; funds held without an escrow record",
            extra={**context, "error": str(e)},
            exc_info=True,
        )
        return False

    logger.critical("Escrow persistence failed after debit; funds returned to creator", extra=context)
    return True
