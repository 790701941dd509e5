"""
Ledger - Double-entry bookkeeping for participant balances.

Every movement debits one account and credits another. Escrow funds are
locked by moving them from the creator's balance into the platform escrow
pool and settled by paying them back out of the pool.

Public API:
    Models (ledger.models):
        LedgerAccount - Holds monetary value (balances, escrow pool, funding)
        LedgerEntry - Records movements between accounts
        AccountType - Enum of account categories
        EntryType - Enum of movement types

    Service (ledger.services):
        LedgerService - Account management, deposits, escrow lock/payout

    Types (ledger.types):
        Money - Monetary amount with currency
        RecordEntryParams - Parameters for recording entries

    Exceptions (ledger.exceptions):
        LedgerError - Base exception for ledger operations
        AccountNotFound - Account lookup failures
        InsufficientBalance - Balance validation failures
        InactiveAccount - Operations on inactive accounts

Usage:
    from ledger.services import LedgerService
    from ledger.exceptions import InsufficientBalance

    LedgerService.open_user_account("ag_alice")
    LedgerService.deposit("ag_alice", Decimal("100"), idempotency_key="dep:alice:1")

    try:
        LedgerService.lock_funds("ag_alice", Decimal("500"), idempotency_key="esc_x:lock")
    except InsufficientBalance as e:
        print(f"Need {e.required}, have {e.available}")

Note:
    Models are not imported here because this package is the Django app
    module itself and is imported before the app registry is ready.
"""
