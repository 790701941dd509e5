"""
Result types returned by EscrowService read operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from decimal import Decimal

    from escrow.models import Escrow, EscrowEvent


@dataclass
class EscrowDetail:
    """
    An escrow as seen by a particular viewer.

    Attributes:
        escrow: The Escrow model instance
        events: Event history, only populated when the viewer is a participant
    """

    escrow: Escrow
    events: list[EscrowEvent] | None = field(default=None)


@dataclass(frozen=True)
class PublicStats:
    """Aggregate counters across all escrows plus the configured rates."""

    total_created: int
    total_released: int
    total_disputed: int
    total_volume: Decimal
    total_commission: Decimal
    commission_rate: Decimal
    referral_commission_rate: Decimal
