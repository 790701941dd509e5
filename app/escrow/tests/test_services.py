"""
Tests for EscrowService.

Runs against the real ledger app unless a test needs a collaborator to
fail, in which case it is replaced with a mock.
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.utils import timezone
from freezegun import freeze_time

from escrow.exceptions import PersistenceFailureError
from escrow.models import Escrow, EscrowStats
from escrow.services import EscrowService
from escrow.state_machines import EscrowEventKind, EscrowStatus
from escrow.tests.helpers import balance_of, open_account
from ledger.services import LedgerService


def create(service, **overrides):
    params = {
        "creator": "ag_creator",
        "counterparty": "ag_worker",
        "amount": "10.00",
        "description": "Summarise the quarterly report",
        "timeout_hours": 24,
    }
    params.update(overrides)
    return service.create(**params)


# =============================================================================
# Create
# =============================================================================


class TestCreateValidation:
    """Validation runs in order and stops at the first failure."""

    @pytest.mark.parametrize("amount", ["abc", None, "NaN", "Infinity", True, ""])
    def test_amount_must_be_a_number(self, service, creator, counterparty, amount):
        result = create(service, amount=amount)

        assert result.error_code == "VALIDATION_ERROR"
        assert "amount" in result.errors

    def test_amount_below_minimum(self, service, creator, counterparty):
        result = create(service, amount="0.09")

        assert result.error_code == "VALIDATION_ERROR"
        assert result.errors == {"amount": ["Minimum escrow amount is 0.10"]}

    def test_amount_at_minimum_accepted(self, service, creator, counterparty):
        assert create(service, amount="0.10").success

    def test_description_too_short_after_trim(self, service, creator, counterparty):
        result = create(service, description="  ab  ")

        assert result.error_code == "VALIDATION_ERROR"
        assert "description" in result.errors

    def test_amount_checked_before_description(self, service, creator, counterparty):
        result = create(service, amount="0.01", description="")

        assert list(result.errors) == ["amount"]

    @pytest.mark.parametrize("counterparty_id", ["bob", "ag_", "", None, "ag_" + "x" * 62])
    def test_malformed_counterparty(self, service, creator, counterparty, counterparty_id):
        result = create(service, counterparty=counterparty_id)

        assert result.error_code == "VALIDATION_ERROR"
        assert "counterparty" in result.errors

    def test_cannot_escrow_with_yourself(self, service, creator):
        result = create(service, counterparty="ag_creator")

        assert result.error_code == "VALIDATION_ERROR"
        assert result.errors == {"counterparty": ["Cannot create an escrow with yourself"]}

    def test_unknown_counterparty(self, service, creator):
        result = create(service, counterparty="ag_nobody")

        assert result.error_code == "NOT_FOUND"
        assert result.error == "Counterparty account not found"

    def test_unknown_creator(self, service, counterparty):
        result = create(service, creator="ag_ghost")

        assert result.error_code == "NOT_FOUND"
        assert result.error == "Creator account not found"

    def test_insufficient_balance(self, service, creator, counterparty):
        result = create(service, amount="100.01")

        assert result.error_code == "INSUFFICIENT_FUNDS"
        assert result.retryable is False
        assert balance_of("ag_creator") == Decimal("100")

    def test_failed_validation_has_no_side_effects(self, service, creator, counterparty):
        create(service, amount="0.01")

        assert Escrow.objects.count() == 0
        assert balance_of("ag_creator") == Decimal("100")


class TestCreate:
    def test_debits_creator_and_funds_escrow(self, service, creator, counterparty):
        result = create(service, amount="10.00")

        escrow = result.data
        assert result.success
        assert escrow.status == EscrowStatus.FUNDED
        assert escrow.amount == Decimal("10")
        assert escrow.commission == Decimal("0.10")
        assert escrow.referrer is None
        assert escrow.referral_commission == Decimal("0")
        assert balance_of("ag_creator") == Decimal("90")

    def test_description_is_trimmed(self, service, creator, counterparty):
        result = create(service, description="  Write the tests  ")

        assert result.data.description == "Write the tests"

    def test_auto_release_at_from_clamped_timeout(self, service, creator, counterparty):
        with freeze_time("2026-03-01 12:00:00"):
            escrow = create(service, timeout_hours=10_000).data

        assert escrow.timeout_hours == 720
        assert escrow.auto_release_at - escrow.created_at == timedelta(hours=720)

    def test_default_timeout(self, service, creator, counterparty):
        escrow = create(service, timeout_hours=None).data

        assert escrow.timeout_hours == 24
        assert escrow.auto_release_at == escrow.created_at + timedelta(hours=24)

    def test_fractional_timeout_is_floored(self, service, creator, counterparty):
        assert create(service, timeout_hours=2.9).data.timeout_hours == 2

    def test_amount_quantized_to_six_places(self, service, creator, counterparty):
        escrow = create(service, amount="1.23456789").data

        assert escrow.amount == Decimal("1.234568")
        assert balance_of("ag_creator") == Decimal("100") - Decimal("1.234568")

    def test_created_event_and_stats(self, service, creator, counterparty):
        before = EscrowStats.load()

        escrow = create(service, amount="10.00").data

        [event] = service.get_events(escrow.id).data
        assert event.kind == EscrowEventKind.CREATED
        assert event.actor == "ag_creator"
        assert event.note == 'Escrow created: $10 for "Summarise the quarterly report"'
        stats = EscrowStats.load()
        assert stats.total_created == before.total_created + 1
        assert stats.total_volume == before.total_volume + Decimal("10")

    def test_persistence_failure_refunds_creator(self, service, creator, counterparty):
        with mock.patch.object(service.store, "put", side_effect=PersistenceFailureError()):
            result = create(service)

        assert result.error_code == "PERSISTENCE_FAILURE"
        assert result.retryable is True
        assert result.error == "Temporary failure, please retry later"
        assert balance_of("ag_creator") == Decimal("100")

    def test_lost_debit_race_is_insufficient_funds(self, service, creator, counterparty):
        with mock.patch.object(service.ledger, "debit", return_value=False):
            result = create(service)

        assert result.error_code == "INSUFFICIENT_FUNDS"
        assert Escrow.objects.count() == 0

    def test_ledger_lookup_failure(self, service, creator, counterparty):
        with mock.patch.object(service.ledger, "lookup", side_effect=RuntimeError("timeout")):
            result = create(service)

        assert result.error_code == "LEDGER_FAILURE"
        assert result.retryable is True


class TestReferrerResolution:
    def test_referral_code_sets_referrer(self, service, creator, counterparty, referrer):
        escrow = create(service, amount="50", referral_code="REFCODE").data

        assert escrow.referrer == "ag_referrer"
        assert escrow.commission == Decimal("0.50")
        assert escrow.referral_commission == Decimal("0.075")

    def test_stored_referrer_used_without_code(self, service, referred_creator, counterparty):
        escrow = create(service, creator="ag_referred").data

        assert escrow.referrer == "ag_referrer"
        assert escrow.referral_commission == Decimal("0.015")

    def test_code_wins_over_stored_referrer(self, service, referred_creator, counterparty):
        open_account("ag_other", referral_code="OTHER")

        escrow = create(service, creator="ag_referred", referral_code="OTHER").data

        assert escrow.referrer == "ag_other"

    def test_unknown_code_means_no_referrer(self, service, referred_creator, counterparty):
        escrow = create(service, creator="ag_referred", referral_code="NOPE").data

        assert escrow.referrer is None
        assert escrow.referral_commission == Decimal("0")

    def test_own_code_means_no_referrer(self, service, creator, counterparty):
        escrow = create(service, referral_code="CREATOR").data

        assert escrow.referrer is None

    def test_stored_referrer_without_account_is_dropped(self, service, counterparty, db):
        open_account("ag_orphan", Decimal("100"), referred_by="ag_ghost")

        escrow = create(service, creator="ag_orphan").data

        assert escrow.referrer is None
        assert escrow.referral_commission == Decimal("0")
        assert service.release(escrow.id, "ag_orphan").success
        assert balance_of("ag_worker") == Decimal("9.90")

    def test_deactivated_stored_referrer_is_dropped(
        self, service, referred_creator, counterparty, referrer
    ):
        LedgerService.deactivate_account(referrer.id)

        escrow = create(service, creator="ag_referred").data

        assert escrow.referrer is None


# =============================================================================
# Transitions
# =============================================================================


class TestMarkComplete:
    def test_counterparty_completes(self, service, funded_escrow):
        result = service.mark_complete(funded_escrow.id, "ag_worker")

        assert result.success
        assert result.data.status == EscrowStatus.COMPLETED
        assert result.data.completed_at is not None
        assert Escrow.objects.get(id=funded_escrow.id).status == EscrowStatus.COMPLETED

    def test_creator_cannot_complete(self, service, funded_escrow):
        result = service.mark_complete(funded_escrow.id, "ag_creator")

        assert result.error_code == "FORBIDDEN"

    def test_second_complete_is_invalid_state(self, service, funded_escrow):
        service.mark_complete(funded_escrow.id, "ag_worker")

        result = service.mark_complete(funded_escrow.id, "ag_worker")

        assert result.error_code == "INVALID_STATE"

    def test_unknown_escrow(self, service, db):
        result = service.mark_complete("esc_0000000000000000", "ag_worker")

        assert result.error_code == "NOT_FOUND"


class TestRelease:
    def test_pays_counterparty_net_of_commission(self, service, funded_escrow):
        before = EscrowStats.load()

        result = service.release(funded_escrow.id, "ag_creator")

        assert result.success
        assert result.data.status == EscrowStatus.RELEASED
        assert balance_of("ag_worker") == Decimal("9.90")
        stats = EscrowStats.load()
        assert stats.total_released == before.total_released + 1
        assert stats.total_commission == before.total_commission + Decimal("0.10")

    def test_non_creator_forbidden_and_nothing_changes(self, service, funded_escrow):
        result = service.release(funded_escrow.id, "ag_worker")

        assert result.error_code == "FORBIDDEN"
        assert Escrow.objects.get(id=funded_escrow.id).status == EscrowStatus.FUNDED
        assert balance_of("ag_worker") == Decimal("0")

    def test_outsider_gets_forbidden_even_on_terminal_escrow(self, service, funded_escrow):
        service.release(funded_escrow.id, "ag_creator")

        assert service.release(funded_escrow.id, "ag_stranger").error_code == "FORBIDDEN"

    def test_double_release_rejected(self, service, funded_escrow):
        service.release(funded_escrow.id, "ag_creator")

        result = service.release(funded_escrow.id, "ag_creator")

        assert result.error_code == "INVALID_STATE"
        assert balance_of("ag_worker") == Decimal("9.90")

    def test_release_after_dispute_rejected(self, service, funded_escrow):
        service.dispute(funded_escrow.id, "ag_worker", "Scope changed")

        assert service.release(funded_escrow.id, "ag_creator").error_code == "INVALID_STATE"

    def test_ledger_failure_rolls_back_status(self, service, funded_escrow):
        with mock.patch.object(service.ledger, "credit", side_effect=RuntimeError("ledger down")):
            result = service.release(funded_escrow.id, "ag_creator")

        stored = Escrow.objects.get(id=funded_escrow.id)
        assert result.error_code == "LEDGER_FAILURE"
        assert result.retryable is True
        assert stored.status == EscrowStatus.FUNDED
        assert stored.released_at is None
        assert [e.kind for e in service.get_events(funded_escrow.id).data] == [
            EscrowEventKind.CREATED
        ]

    def test_retry_after_ledger_failure_pays_once(self, service, funded_escrow):
        with mock.patch.object(service.ledger, "credit", side_effect=RuntimeError("ledger down")):
            service.release(funded_escrow.id, "ag_creator")

        assert service.release(funded_escrow.id, "ag_creator").success
        assert balance_of("ag_worker") == Decimal("9.90")

    def test_lost_guarded_update_is_invalid_state(self, service, funded_escrow):
        with mock.patch.object(service.store, "transition", return_value=False):
            result = service.release(funded_escrow.id, "ag_creator")

        assert result.error_code == "INVALID_STATE"
        assert balance_of("ag_worker") == Decimal("0")


class TestReferrerGoneAtSettlement:
    @pytest.fixture
    def referred_escrow(self, service, referred_creator, counterparty):
        result = create(service, creator="ag_referred", timeout_hours=1)
        assert result.data.referrer == "ag_referrer"
        return result.data

    def test_release_withholds_referral_commission(self, service, referred_escrow, referrer):
        LedgerService.deactivate_account(referrer.id)

        with mock.patch("escrow.services.logger") as logger:
            result = service.release(referred_escrow.id, "ag_referred")

        assert result.success
        assert balance_of("ag_worker") == Decimal("9.90")
        assert balance_of("ag_referrer") == Decimal("0")
        logger.critical.assert_called_once()
        assert logger.critical.call_args.kwargs["extra"]["referrer"] == "ag_referrer"

    def test_auto_refund_still_returns_funds(self, service, referred_escrow, referrer):
        LedgerService.deactivate_account(referrer.id)

        with freeze_time(timezone.now() + timedelta(hours=2)):
            result = service.auto_refund(referred_escrow.id)

        assert result.success
        assert balance_of("ag_referred") == Decimal("99.90")
        assert balance_of("ag_referrer") == Decimal("0")


class TestSettlementCreditFailureLogging:
    @pytest.fixture
    def referred_escrow(self, service, referred_creator, counterparty):
        return create(service, creator="ag_referred").data

    def test_transactional_ledger_failure_is_an_error(self, service, referred_escrow):
        credit = mock.Mock(side_effect=[None, RuntimeError("ledger down")])

        with mock.patch.object(service.ledger, "credit", credit):
            with mock.patch("escrow.services.logger") as logger:
                result = service.release(referred_escrow.id, "ag_referred")

        assert result.error_code == "LEDGER_FAILURE"
        logger.critical.assert_not_called()
        logger.error.assert_called_once()

    def test_external_ledger_failure_after_credit_is_critical(self, service, referred_escrow):
        credit = mock.Mock(side_effect=[None, RuntimeError("ledger down")])

        with mock.patch.object(service.ledger, "credit", credit):
            with mock.patch.object(service.ledger, "transactional", False):
                with mock.patch("escrow.services.logger") as logger:
                    result = service.release(referred_escrow.id, "ag_referred")

        assert result.error_code == "LEDGER_FAILURE"
        logger.critical.assert_called_once()
        extra = logger.critical.call_args.kwargs["extra"]
        assert extra["issued_credits"] == [f"{referred_escrow.id}:release"]
        assert extra["idempotency_key"] == f"{referred_escrow.id}:refcom"


class TestDispute:
    def test_either_participant_disputes(self, service, funded_escrow):
        result = service.dispute(funded_escrow.id, "ag_creator", "Wrong deliverable")

        events = service.get_events(funded_escrow.id).data
        assert result.data.status == EscrowStatus.DISPUTED
        assert events[-1].kind == EscrowEventKind.DISPUTED
        assert events[-1].note == "Wrong deliverable"

    def test_blank_reason_defaults(self, service, funded_escrow):
        service.dispute(funded_escrow.id, "ag_worker", "   ")

        assert service.get_events(funded_escrow.id).data[-1].note == "No reason provided"

    def test_moves_no_funds_and_bumps_counter(self, service, funded_escrow):
        before = EscrowStats.load().total_disputed

        service.dispute(funded_escrow.id, "ag_worker")

        assert balance_of("ag_creator") == Decimal("90")
        assert balance_of("ag_worker") == Decimal("0")
        assert EscrowStats.load().total_disputed == before + 1

    def test_outsider_forbidden(self, service, funded_escrow):
        assert service.dispute(funded_escrow.id, "ag_stranger", "x").error_code == "FORBIDDEN"


class TestAutoRefund:
    def test_before_deadline_is_invalid_state(self, service, funded_escrow):
        assert service.auto_refund(funded_escrow.id).error_code == "INVALID_STATE"

    def test_refunds_creator_net_after_deadline(self, service, funded_escrow):
        with freeze_time(timezone.now() + timedelta(hours=25)):
            result = service.auto_refund(funded_escrow.id)

        assert result.success
        assert result.data.status == EscrowStatus.REFUNDED
        assert balance_of("ag_creator") == Decimal("99.90")
        [*_, event] = service.get_events(funded_escrow.id).data
        assert event.kind == EscrowEventKind.REFUNDED
        assert event.actor is None
        assert event.note == "Auto-refunded after 24h timeout"

    def test_refund_from_completed(self, service, funded_escrow):
        service.mark_complete(funded_escrow.id, "ag_worker")

        with freeze_time(timezone.now() + timedelta(hours=25)):
            assert service.auto_refund(funded_escrow.id).success

    def test_disputed_escrow_is_not_refunded(self, service, funded_escrow):
        service.dispute(funded_escrow.id, "ag_worker")

        with freeze_time(timezone.now() + timedelta(hours=25)):
            assert service.auto_refund(funded_escrow.id).error_code == "INVALID_STATE"

        assert balance_of("ag_creator") == Decimal("90")


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    def test_participant_sees_events(self, service, funded_escrow):
        detail = service.get_by_id(funded_escrow.id, viewer="ag_worker").data

        assert detail.escrow.id == funded_escrow.id
        assert [e.kind for e in detail.events] == [EscrowEventKind.CREATED]

    def test_outsider_sees_no_events(self, service, funded_escrow):
        detail = service.get_by_id(funded_escrow.id, viewer="ag_stranger").data

        assert detail.escrow.id == funded_escrow.id
        assert detail.events is None

    def test_get_by_id_unknown(self, service, db):
        assert service.get_by_id("esc_0000000000000000").error_code == "NOT_FOUND"

    def test_get_events_unknown(self, service, db):
        assert service.get_events("esc_0000000000000000").error_code == "NOT_FOUND"

    def test_public_stats(self, service, funded_escrow):
        stats = service.get_public_stats().data

        assert stats.total_created >= 1
        assert stats.total_volume >= Decimal("10")
        assert stats.commission_rate == Decimal("0.01")
        assert stats.referral_commission_rate == Decimal("0.15")


class TestConfiguration:
    def test_overrides_take_precedence_over_settings(self, db):
        service = EscrowService(
            commission_rate="0.02",
            min_amount=Decimal("1"),
            max_timeout_hours=48,
            account_id_prefix="usr_",
        )

        assert service.commission_rate == Decimal("0.02")
        assert service.min_amount == Decimal("1")
        assert service.max_timeout_hours == 48
        assert service.account_id_prefix == "usr_"

    def test_reads_settings(self, db, settings):
        settings.ESCROW_COMMISSION_RATE = "0.05"

        assert EscrowService().commission_rate == Decimal("0.05")

    def test_zero_commission_override(self, creator, counterparty):
        free = EscrowService(commission_rate=Decimal("0"))

        escrow = create(free).data

        assert escrow.commission == Decimal("0")

    def test_unexpected_error_is_internal_error(self, service, funded_escrow):
        with mock.patch.object(service.store, "get", side_effect=KeyError("boom")):
            result = service.release(funded_escrow.id, "ag_creator")

        assert result.error_code == "INTERNAL_ERROR"
        assert result.error == "Internal error, please retry later"
