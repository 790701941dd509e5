"""
Ledger-specific exceptions for financial operations.

Exception Hierarchy:
    LedgerError (base)
    ├── AccountNotFound - Account lookup failures
    ├── InsufficientBalance - Balance validation failures
    └── InactiveAccount - Operations on inactive accounts

Usage:
    from ledger.exceptions import InsufficientBalance, AccountNotFound

    if balance < amount:
        raise InsufficientBalance(account.id, required=amount, available=balance)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal
    from typing import Any


class LedgerError(BaseApplicationError):
    """
    Base exception for all ledger operations.

    Callers outside this app treat any LedgerError other than
    InsufficientBalance as a failure of the ledger itself.
    """

    default_error_code: str = "LEDGER_ERROR"


class AccountNotFound(LedgerError):
    """Raised when a ledger account cannot be found by id, owner or referral code."""

    default_error_code: str = "ACCOUNT_NOT_FOUND"


class InsufficientBalance(LedgerError):
    """
    Raised when an account has insufficient funds for a debit.

    Attributes:
        account_id: The UUID of the account with insufficient funds
        required: The amount that was required
        available: The amount that was available
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        account_id: uuid.UUID,
        required: Decimal,
        available: Decimal,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.account_id = account_id
        self.required = required
        self.available = available

        message = (
            f"Account {account_id} has insufficient balance: "
            f"required {required}, available {available}"
        )

        full_details = {
            "account_id": str(account_id),
            "required": str(required),
            "available": str(available),
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=message,
            error_code=error_code,
            details=full_details,
        )


class InactiveAccount(LedgerError):
    """
    Raised when attempting to use an inactive account.

    Accounts can be deactivated but their history is preserved.
    Operations on inactive accounts are rejected.
    """

    default_error_code: str = "INACTIVE_ACCOUNT"
