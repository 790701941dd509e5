"""
Transition rules and commission arithmetic for escrows.

This module is pure: it inspects an Escrow instance and returns decisions
or amounts, but never touches storage or the balance ledger. The service
layer applies its answers.

Each guarded transition is described by a TransitionRule:

    rule          sources               target     who may trigger
    COMPLETE      funded                completed  counterparty
    RELEASE       funded, completed     released   creator
    DISPUTE       funded, completed     disputed   either participant
    REFUND        funded, completed     refunded   system (after deadline)

Permission is checked before state, so an outsider poking at a finished
escrow learns "forbidden", not the escrow's status.

Usage:
    from escrow.state_machines.machine import RELEASE, authorize, ensure_can_apply

    authorize(escrow, RELEASE, actor)
    ensure_can_apply(escrow, RELEASE, now)
    payouts = settlement_payouts(escrow, RELEASE)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING

from django_fsm import can_proceed

from escrow.exceptions import EscrowForbiddenError, InvalidStateTransitionError
from escrow.state_machines.states import OPEN_STATUSES, EscrowEventKind, EscrowStatus

if TYPE_CHECKING:
    from datetime import datetime

    from escrow.models import Escrow

# Six fractional digits, matching the ledger
MONEY_QUANTUM = Decimal("0.000001")


def quantize_money(value: Decimal) -> Decimal:
    """Round to six fractional digits, half away from zero."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


# =============================================================================
# Transition rules
# =============================================================================


class Role(str, Enum):
    """Who may trigger a transition."""

    CREATOR = "creator"
    COUNTERPARTY = "counterparty"
    PARTICIPANT = "participant"
    SYSTEM = "system"


@dataclass(frozen=True)
class TransitionRule:
    """
    A guarded status change.

    Attributes:
        name: The django-fsm transition method on Escrow
        sources: Statuses the escrow may be in
        target: Status after the transition
        timestamp_field: Escrow field set to the transition time
        event_kind: Kind of the event appended to the log
        role: Who may trigger it
    """

    name: str
    sources: tuple[str, ...]
    target: str
    timestamp_field: str
    event_kind: str
    role: Role


COMPLETE = TransitionRule(
    name="complete",
    sources=(EscrowStatus.FUNDED,),
    target=EscrowStatus.COMPLETED,
    timestamp_field="completed_at",
    event_kind=EscrowEventKind.COMPLETED,
    role=Role.COUNTERPARTY,
)

RELEASE = TransitionRule(
    name="release",
    sources=OPEN_STATUSES,
    target=EscrowStatus.RELEASED,
    timestamp_field="released_at",
    event_kind=EscrowEventKind.RELEASED,
    role=Role.CREATOR,
)

DISPUTE = TransitionRule(
    name="dispute",
    sources=OPEN_STATUSES,
    target=EscrowStatus.DISPUTED,
    timestamp_field="disputed_at",
    event_kind=EscrowEventKind.DISPUTED,
    role=Role.PARTICIPANT,
)

REFUND = TransitionRule(
    name="refund",
    sources=OPEN_STATUSES,
    target=EscrowStatus.REFUNDED,
    timestamp_field="refunded_at",
    event_kind=EscrowEventKind.REFUNDED,
    role=Role.SYSTEM,
)


def authorize(escrow: Escrow, rule: TransitionRule, actor: str | None) -> None:
    """
    Check that ``actor`` may trigger ``rule`` on ``escrow``.

    ``actor`` is None for the system.

    Raises:
        EscrowForbiddenError: If the actor has the wrong role
    """
    if rule.role is Role.SYSTEM:
        allowed = actor is None
    elif rule.role is Role.CREATOR:
        allowed = actor == escrow.creator
    elif rule.role is Role.COUNTERPARTY:
        allowed = actor == escrow.counterparty
    else:
        allowed = escrow.is_participant(actor)

    if not allowed:
        raise EscrowForbiddenError(
            f"Only the {rule.role.value} can {rule.name} this escrow",
            details={"escrow_id": escrow.id, "action": rule.name, "actor": actor},
        )


def ensure_can_apply(escrow: Escrow, rule: TransitionRule, now: datetime) -> None:
    """
    Check that ``rule`` is legal from the escrow's current status.

    Raises:
        InvalidStateTransitionError: If the status forbids it, or the
            refund deadline has not been reached yet
    """
    if escrow.status not in rule.sources:
        raise InvalidStateTransitionError(
            f"Cannot {rule.name} escrow in {escrow.status} status",
            details={
                "escrow_id": escrow.id,
                "current_status": escrow.status,
                "action": rule.name,
            },
        )
    if rule is REFUND and not escrow.is_expired(now):
        raise InvalidStateTransitionError(
            f"Escrow {escrow.id} has not reached its auto-release deadline",
            details={
                "escrow_id": escrow.id,
                "auto_release_at": escrow.auto_release_at.isoformat(),
            },
        )
    # The model's own transition graph must agree
    if not can_proceed(getattr(escrow, rule.name)):
        raise InvalidStateTransitionError(
            f"Cannot {rule.name} escrow in {escrow.status} status",
            details={"escrow_id": escrow.id, "current_status": escrow.status},
        )


# =============================================================================
# Commission
# =============================================================================


@dataclass(frozen=True)
class CommissionSplit:
    """Commission withheld from an amount and the referrer's share of it."""

    commission: Decimal
    referral_commission: Decimal


def split_commission(
    amount: Decimal,
    commission_rate: Decimal,
    referral_rate: Decimal,
    has_referrer: bool,
) -> CommissionSplit:
    """
    Compute the commission split for ``amount``.

    ``commission = amount × commission_rate`` and
    ``referral_commission = commission × referral_rate`` (zero without a
    referrer), each rounded to six fractional digits.
    """
    commission = quantize_money(amount * commission_rate)
    referral = quantize_money(commission * referral_rate) if has_referrer else Decimal("0")
    return CommissionSplit(
        commission=commission,
        referral_commission=min(referral, commission),
    )


def clamp_timeout_hours(value, default: int, maximum: int) -> int:
    """
    Floor the requested timeout to whole hours and clamp it to ``[1, maximum]``.

    Missing or non-finite values fall back to ``default``.
    """
    if value is None:
        return default
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(hours):
        return default
    return max(1, min(maximum, math.floor(hours)))


# =============================================================================
# Settlement
# =============================================================================


@dataclass(frozen=True)
class Payout:
    """One credit to issue from the escrow pool when settling."""

    account_id: str
    amount: Decimal
    reason: str
    idempotency_key: str
    referral: bool = False


def settlement_payouts(escrow: Escrow, rule: TransitionRule) -> list[Payout]:
    """
    Credits owed when ``rule`` settles ``escrow``.

    Release pays the counterparty, refund pays the creator; both pay
    ``amount - commission``. The referrer's share is paid either way.
    The house share is never paid out. Other rules move no funds.
    """
    if rule is RELEASE:
        payee, reason, suffix = escrow.counterparty, "escrow_release", "release"
    elif rule is REFUND:
        payee, reason, suffix = escrow.creator, "escrow_timeout_refund", "timeout"
    else:
        return []

    payouts = [
        Payout(
            account_id=payee,
            amount=escrow.net_to_counterparty,
            reason=f"{reason}: {escrow.id}",
            idempotency_key=f"{escrow.id}:{suffix}",
        )
    ]
    if escrow.referrer and escrow.referral_commission > 0:
        payouts.append(
            Payout(
                account_id=escrow.referrer,
                amount=escrow.referral_commission,
                reason=f"escrow_referral_commission: {escrow.id}",
                idempotency_key=f"{escrow.id}:refcom",
                referral=True,
            )
        )
    return [payout for payout in payouts if payout.amount > 0]


def stats_deltas(escrow: Escrow, rule: TransitionRule) -> dict[str, object]:
    """Aggregate counter increments caused by ``rule``."""
    if rule is RELEASE:
        return {"total_released": 1, "total_commission": escrow.commission}
    if rule is DISPUTE:
        return {"total_disputed": 1}
    return {}


def event_note(escrow: Escrow, rule: TransitionRule, actor: str | None, reason: str = "") -> str:
    """Human-readable note stored with the transition's event."""
    if rule is COMPLETE:
        return "Counterparty marked task complete"
    if rule is RELEASE:
        return f"Released by creator {actor}"
    if rule is DISPUTE:
        return reason
    return f"Auto-refunded after {escrow.timeout_hours}h timeout"
