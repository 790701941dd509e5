"""
State machine definitions for the escrow domain.

States live in ``states`` (importable before the app registry is ready);
the transition rules and commission arithmetic live in ``machine``.
"""

from escrow.state_machines.states import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    EscrowEventKind,
    EscrowStatus,
)

__all__ = [
    "EscrowEventKind",
    "EscrowStatus",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
]
