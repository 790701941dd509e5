"""
Adapters for the escrow service's external collaborators.

Usage:
    from escrow.adapters import LedgerBalanceAdapter, LedgerReferralResolver

    service = EscrowService(
        ledger=LedgerBalanceAdapter(),
        referrals=LedgerReferralResolver(),
    )
"""

from escrow.adapters.ledger_adapter import LedgerBalanceAdapter, LedgerReferralResolver

__all__ = [
    "LedgerBalanceAdapter",
    "LedgerReferralResolver",
]
