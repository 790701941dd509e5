"""
Escrow service: the operations callers use to move escrowed funds.

EscrowService ties the pure transition rules, the escrow store and the
external balance ledger together. Every public method returns a
ServiceResult; domain exceptions never escape to the caller.

Transaction shape for a settling transition (release, auto_refund):

    with atomic():
        store.transition(...)      # guarded UPDATE claims the row
        ledger.credit(...)         # one credit per payout
        store.append_event(...)
        store.bump_stats(...)

If a credit fails the whole store transaction rolls back, so no reader
ever sees a new status without its balance movement. Credits already
issued to an external ledger are not unwound; their idempotency keys make
retrying the same operation safe.

Usage:
    from escrow.services import EscrowService

    service = EscrowService()
    result = service.create(
        creator="ag_alice",
        counterparty="ag_bob",
        amount="10.00",
        description="Summarise the quarterly report",
        timeout_hours=24,
    )
    if result.success:
        service.release(result.data.id, actor="ag_alice")
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.services import BaseService, ServiceResult

from escrow.adapters import LedgerBalanceAdapter, LedgerReferralResolver
from escrow.exceptions import (
    EscrowNotFoundError,
    EscrowValidationError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerFailureError,
)
from escrow.funding import fund_escrow
from escrow.models import Escrow, generate_escrow_id
from escrow.state_machines.machine import (
    COMPLETE,
    DISPUTE,
    REFUND,
    RELEASE,
    authorize,
    clamp_timeout_hours,
    ensure_can_apply,
    event_note,
    quantize_money,
    settlement_payouts,
    split_commission,
    stats_deltas,
)
from escrow.store import EscrowStore
from escrow.types import EscrowDetail, PublicStats

if TYPE_CHECKING:
    from escrow.models import EscrowEvent
    from escrow.protocols import AccountSnapshot, BalanceLedger, ReferralResolver
    from escrow.state_machines.machine import Payout, TransitionRule


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_DISPUTE_REASON = "No reason provided"

# DecimalField(max_digits=20, decimal_places=6) holds 14 integer digits
MAX_AMOUNT = Decimal("1e14")


def _setting(override, name: str, default):
    if override is not None:
        return override
    return getattr(settings, name, default)


# =============================================================================
# Escrow Service
# =============================================================================


class EscrowService(BaseService):
    """
    Service for creating and settling escrows.

    Collaborators and policy values default to the ``ledger`` app adapters
    and the ``ESCROW_*`` settings. Any of them can be injected:

        service = EscrowService(ledger=FakeLedger(), commission_rate=Decimal("0.02"))
    """

    def __init__(
        self,
        ledger: BalanceLedger | None = None,
        referrals: ReferralResolver | None = None,
        store: EscrowStore | None = None,
        *,
        commission_rate: Decimal | str | None = None,
        referral_commission_rate: Decimal | str | None = None,
        min_amount: Decimal | str | None = None,
        min_description_length: int | None = None,
        default_timeout_hours: int | None = None,
        max_timeout_hours: int | None = None,
        account_id_prefix: str | None = None,
    ):
        self.ledger = ledger or LedgerBalanceAdapter()
        self.referrals = referrals or LedgerReferralResolver()
        self.store = store or EscrowStore()

        self.commission_rate = Decimal(
            str(_setting(commission_rate, "ESCROW_COMMISSION_RATE", "0.01"))
        )
        self.referral_commission_rate = Decimal(
            str(_setting(referral_commission_rate, "ESCROW_REFERRAL_COMMISSION_RATE", "0.15"))
        )
        self.min_amount = Decimal(str(_setting(min_amount, "ESCROW_MIN_AMOUNT", "0.10")))
        self.min_description_length = _setting(
            min_description_length, "ESCROW_MIN_DESCRIPTION_LENGTH", 3
        )
        self.default_timeout_hours = _setting(
            default_timeout_hours, "ESCROW_DEFAULT_TIMEOUT_HOURS", 24
        )
        self.max_timeout_hours = _setting(max_timeout_hours, "ESCROW_MAX_TIMEOUT_HOURS", 720)
        self.account_id_prefix = _setting(account_id_prefix, "ESCROW_ACCOUNT_ID_PREFIX", "ag_")

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        creator: str,
        counterparty: str,
        amount,
        description: str,
        timeout_hours=None,
        referral_code: str | None = None,
    ) -> ServiceResult[Escrow]:
        """
        Create and fund a new escrow.

        Debits ``amount`` from the creator and persists the escrow in
        status ``funded``. Validation runs in a fixed order and stops at the
        first failure: amount, description, counterparty format,
        counterparty != creator, counterparty exists, creator exists,
        creator balance.

        Args:
            creator: Account identifier of the funding participant
            counterparty: Account identifier to be paid on release
            amount: Amount to lock (Decimal, str, int or float)
            description: What the counterparty is being paid for
            timeout_hours: Hours until auto-refund (default 24, clamped)
            referral_code: Optional code of the referring account

        Returns:
            ServiceResult containing the funded Escrow
        """
        context = {"operation": "create", "creator": creator, "counterparty": counterparty}
        try:
            escrow = self._create(
                creator,
                counterparty,
                amount,
                description,
                timeout_hours,
                referral_code,
            )
        except Exception as e:
            return self._failure(e, "create", context)

        logger.info(
            "Escrow created",
            extra={
                **context,
                "escrow_id": escrow.id,
                "amount": str(escrow.amount),
                "commission": str(escrow.commission),
                "referrer": escrow.referrer,
            },
        )
        return ServiceResult.success(escrow)

    def _create(
        self,
        creator: str,
        counterparty: str,
        amount,
        description: str,
        timeout_hours,
        referral_code: str | None,
    ) -> Escrow:
        amount = self._validate_amount(amount)
        description = self._validate_description(description)
        self._validate_counterparty(creator, counterparty)

        if self._lookup(counterparty) is None:
            raise EscrowNotFoundError(
                "Counterparty account not found",
                details={"account_id": counterparty},
            )
        creator_account = self._lookup(creator)
        if creator_account is None:
            raise EscrowNotFoundError(
                "Creator account not found",
                details={"account_id": creator},
            )
        if creator_account.balance < amount:
            raise InsufficientFundsError(
                f"Insufficient balance: {creator_account.balance} available, {amount} required",
                details={
                    "available": str(creator_account.balance),
                    "required": str(amount),
                },
            )

        hours = clamp_timeout_hours(
            timeout_hours,
            default=self.default_timeout_hours,
            maximum=self.max_timeout_hours,
        )
        referrer = self._resolve_referrer(creator_account, referral_code)
        split = split_commission(
            amount,
            self.commission_rate,
            self.referral_commission_rate,
            has_referrer=referrer is not None,
        )

        now = timezone.now()
        escrow = Escrow(
            id=generate_escrow_id(),
            creator=creator,
            counterparty=counterparty,
            amount=amount,
            commission=split.commission,
            referrer=referrer,
            referral_commission=split.referral_commission,
            description=description,
            timeout_hours=hours,
            created_at=now,
            updated_at=now,
            auto_release_at=now + timedelta(hours=hours),
        )
        return fund_escrow(escrow, ledger=self.ledger, store=self.store)

    def _validate_amount(self, value) -> Decimal:
        if isinstance(value, bool):
            value = None
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError):
            amount = None
        if amount is None or not amount.is_finite():
            raise EscrowValidationError(
                "Amount must be a number",
                details={"errors": {"amount": ["Amount must be a number"]}},
            )
        if amount < self.min_amount:
            message = f"Minimum escrow amount is {self.min_amount}"
            raise EscrowValidationError(message, details={"errors": {"amount": [message]}})
        if amount >= MAX_AMOUNT:
            message = "Amount is too large"
            raise EscrowValidationError(message, details={"errors": {"amount": [message]}})
        return quantize_money(amount)

    def _validate_description(self, value) -> str:
        description = value.strip() if isinstance(value, str) else ""
        if len(description) < self.min_description_length:
            message = f"Description must be at least {self.min_description_length} characters"
            raise EscrowValidationError(message, details={"errors": {"description": [message]}})
        return description

    def _validate_counterparty(self, creator: str, counterparty) -> None:
        prefix = self.account_id_prefix
        if (
            not isinstance(counterparty, str)
            or not counterparty.startswith(prefix)
            or len(counterparty) <= len(prefix)
            or len(counterparty) > 64
        ):
            message = f"Counterparty must be a valid account ID ({prefix}...)"
            raise EscrowValidationError(message, details={"errors": {"counterparty": [message]}})
        if counterparty == creator:
            message = "Cannot create an escrow with yourself"
            raise EscrowValidationError(message, details={"errors": {"counterparty": [message]}})

    def _lookup(self, account_id: str) -> AccountSnapshot | None:
        try:
            return self.ledger.lookup(account_id)
        except Exception as e:
            logger.error(
                "Ledger account lookup failed",
                extra={"account_id": account_id, "error": str(e)},
                exc_info=True,
            )
            raise LedgerFailureError(details={"account_id": account_id}) from e

    def _resolve_referrer(
        self,
        creator_account: AccountSnapshot,
        referral_code: str | None,
    ) -> str | None:
        """
        Pick the referrer for a new escrow.

        An explicit code wins when it resolves to someone other than the
        creator. A code that does not resolve means no referrer at all;
        the creator's stored referrer only applies when no code is given.
        Either way the referrer must be an existing, active account.
        """
        creator = creator_account.account_id
        if referral_code:
            candidate = self.referrals.resolve_by_code(referral_code)
        else:
            candidate = creator_account.referred_by
        if not candidate or candidate == creator:
            return None
        if self._lookup(candidate) is None:
            logger.warning(
                "Ignoring referrer without an active account",
                extra={"creator": creator, "referrer": candidate},
            )
            return None
        return candidate

    # =========================================================================
    # Transitions
    # =========================================================================

    def mark_complete(self, escrow_id: str, actor: str) -> ServiceResult[Escrow]:
        """Counterparty marks the task done (funded -> completed)."""
        return self._run(COMPLETE, escrow_id, actor)

    def release(self, escrow_id: str, actor: str) -> ServiceResult[Escrow]:
        """
        Creator releases the escrow to the counterparty.

        Credits the counterparty ``amount - commission`` and the referrer
        its share. The house share stays in the escrow pool.
        """
        return self._run(RELEASE, escrow_id, actor)

    def dispute(self, escrow_id: str, actor: str, reason: str = "") -> ServiceResult[Escrow]:
        """Either participant freezes the escrow. No funds move."""
        reason = reason.strip() if isinstance(reason, str) else ""
        return self._run(DISPUTE, escrow_id, actor, reason or DEFAULT_DISPUTE_REASON)

    def auto_refund(self, escrow_id: str) -> ServiceResult[Escrow]:
        """
        Refund an expired escrow to its creator, net of commission.

        System only; fails with INVALID_STATE before ``auto_release_at``.        """
        return self._run(REFUND, escrow_id, None)

    def _run(
        self,
        rule: TransitionRule,
        escrow_id: str,
        actor: str | None,
        reason: str = "",
    ) -> ServiceResult[Escrow]:
        context = {"operation": rule.name, "escrow_id": escrow_id, "actor": actor}
        try:
            escrow = self._apply(rule, escrow_id, actor, reason)
        except Exception as e:
            return self._failure(e, rule.name, context)

        logger.info(
            "Escrow transitioned",
            extra={**context, "status": escrow.status},
        )
        return ServiceResult.success(escrow)

    def _apply(
        self,
        rule: TransitionRule,
        escrow_id: str,
        actor: str | None,
        reason: str = "",
    ) -> Escrow:
        now = timezone.now()
        escrow = self.store.get(escrow_id)

        # Permission before state
        authorize(escrow, rule, actor)
        ensure_can_apply(escrow, rule, now)

        note = event_note(escrow, rule, actor, reason)
        payouts = settlement_payouts(escrow, rule)

        with self.atomic():
            claimed = self.store.transition(
                escrow.id,
                rule.sources,
                rule.target,
                rule.timestamp_field,
                now,
            )
            if not claimed:
                raise InvalidStateTransitionError(
                    f"Escrow {escrow.id} was already transitioned",
                    details={"escrow_id": escrow.id, "action": rule.name},
                )
            self._pay(escrow, rule, payouts)
            self.store.append_event(escrow.id, rule.event_kind, actor, note, now=now)
            deltas = stats_deltas(escrow, rule)
            if deltas:
                self.store.bump_stats(**deltas)

        # Mirror the committed row on the instance
        getattr(escrow, rule.name)(at=now)
        escrow.updated_at = now
        return escrow

    def _pay(self, escrow: Escrow, rule: TransitionRule, payouts: list[Payout]) -> None:
        """
        Issue settlement credits; any failure aborts the transition.

        A referral credit whose referrer no longer has an active account is
        skipped and the house keeps that share. Other credits are never
        skipped, since the payee's funds would be lost.
        """
        issued: list[str] = []
        for payout in payouts:
            if payout.referral and self._lookup(payout.account_id) is None:
                logger.critical(
                    "Referrer account missing or inactive at settlement; "
                    "referral commission withheld",
                    extra={
                        "operation": rule.name,
                        "escrow_id": escrow.id,
                        "referrer": payout.account_id,
                        "amount": str(payout.amount),
                    },
                )
                continue
            try:
                self.ledger.credit(
                    payout.account_id,
                    payout.amount,
                    payout.reason,
                    payout.idempotency_key,
                )
            except Exception as e:
                extra = {
                    "operation": rule.name,
                    "escrow_id": escrow.id,
                    "account_id": payout.account_id,
                    "amount": str(payout.amount),
                    "idempotency_key": payout.idempotency_key,
                    "issued_credits": issued,
                    "error": str(e),
                }
                if issued and not getattr(self.ledger, "transactional", False):
                    # Credits on a ledger outside the store transaction stay
                    # issued until the retry replays them under the same keys
                    logger.critical(
                        "Escrow settlement credit failed after earlier credits were issued; "
                        "escrow rolled back, retry to complete",
                        extra=extra,
                        exc_info=True,
                    )
                else:
                    logger.error("Escrow settlement credit failed", extra=extra, exc_info=True)
                raise LedgerFailureError(
                    details={"escrow_id": escrow.id, "operation": rule.name},
                ) from e
            issued.append(payout.idempotency_key)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_by_id(self, escrow_id: str, viewer: str | None = None) -> ServiceResult[EscrowDetail]:
        """
        Fetch an escrow.

        The event history is attached only when ``viewer`` is one of the
        escrow's participants.
        """
        try:
            escrow = self.store.get(escrow_id)
            events = self.store.list_events(escrow.id) if escrow.is_participant(viewer) else None
        except Exception as e:
            return self._failure(e, "get_by_id", {"escrow_id": escrow_id})
        return ServiceResult.success(EscrowDetail(escrow=escrow, events=events))

    def get_events(self, escrow_id: str) -> ServiceResult[list[EscrowEvent]]:
        try:
            escrow = self.store.get(escrow_id)
            events = self.store.list_events(escrow.id)
        except Exception as e:
            return self._failure(e, "get_events", {"escrow_id": escrow_id})
        return ServiceResult.success(events)

    def get_public_stats(self) -> ServiceResult[PublicStats]:
        try:
            stats = self.store.get_stats()
        except Exception as e:
            return self._failure(e, "get_public_stats", {})
        return ServiceResult.success(
            PublicStats(
                total_created=stats.total_created,
                total_released=stats.total_released,
                total_disputed=stats.total_disputed,
                total_volume=stats.total_volume,
                total_commission=stats.total_commission,
                commission_rate=self.commission_rate,
                referral_commission_rate=self.referral_commission_rate,
            )
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _failure(self, exc: Exception, operation: str, context: dict) -> ServiceResult:
        # Caller mistakes are routine; operational failures are not
        level = logging.ERROR if getattr(exc, "retryable", False) else logging.INFO
        return self.handle_exception(exc, operation, log_level=level, extra=context)
