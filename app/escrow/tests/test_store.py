"""
Tests for EscrowStore.

Covers insert-only persistence, the guarded status update, the event log,
aggregate counters and the expired escrow query.
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.db import DatabaseError
from django.utils import timezone

from escrow.exceptions import EscrowNotFoundError, PersistenceFailureError
from escrow.models import Escrow, EscrowStats
from escrow.state_machines import OPEN_STATUSES, EscrowEventKind, EscrowStatus
from escrow.tests.factories import EscrowFactory


class TestGetAndPut:
    def test_get_unknown_id(self, db, store):
        with pytest.raises(EscrowNotFoundError) as exc_info:
            store.get("esc_doesnotexist00")

        assert exc_info.value.error_code == "NOT_FOUND"

    def test_put_then_get_round_trips(self, db, store):
        escrow = EscrowFactory.build(
            amount=Decimal("50"),
            commission=Decimal("0.5"),
            referrer="ag_referrer",
            referral_commission=Decimal("0.075"),
            description="Translate the onboarding guide",
        )

        store.put(escrow)
        stored = store.get(escrow.id)

        assert stored.creator == escrow.creator
        assert stored.counterparty == escrow.counterparty
        assert stored.amount == Decimal("50")
        assert stored.commission == Decimal("0.5")
        assert stored.referrer == "ag_referrer"
        assert stored.referral_commission == Decimal("0.075")
        assert stored.description == "Translate the onboarding guide"
        assert stored.status == EscrowStatus.FUNDED
        assert stored.auto_release_at == escrow.auto_release_at

    def test_put_existing_id_fails(self, db, store):
        existing = EscrowFactory()
        duplicate = EscrowFactory.build(id=existing.id)

        with pytest.raises(PersistenceFailureError) as exc_info:
            store.put(duplicate)

        assert exc_info.value.retryable is True
        assert Escrow.objects.filter(id=existing.id).count() == 1

    def test_put_database_error(self, db, store):
        escrow = EscrowFactory.build()

        with mock.patch.object(Escrow, "save", side_effect=DatabaseError("disk full")):
            with pytest.raises(PersistenceFailureError):
                store.put(escrow)


class TestTransition:
    def test_applies_and_sets_timestamp(self, db, store):
        escrow = EscrowFactory()
        now = timezone.now()

        applied = store.transition(
            escrow.id, OPEN_STATUSES, EscrowStatus.RELEASED, "released_at", now
        )

        stored = Escrow.objects.get(id=escrow.id)
        assert applied is True
        assert stored.status == EscrowStatus.RELEASED
        assert stored.released_at == now
        assert stored.updated_at == now

    def test_second_caller_loses(self, db, store):
        escrow = EscrowFactory()

        first = store.transition(escrow.id, OPEN_STATUSES, EscrowStatus.RELEASED, "released_at")
        second = store.transition(escrow.id, OPEN_STATUSES, EscrowStatus.REFUNDED, "refunded_at")

        stored = Escrow.objects.get(id=escrow.id)
        assert (first, second) == (True, False)
        assert stored.status == EscrowStatus.RELEASED
        assert stored.refunded_at is None

    def test_wrong_source_status_does_not_apply(self, db, store):
        escrow = EscrowFactory(status=EscrowStatus.DISPUTED)

        applied = store.transition(
            escrow.id, (EscrowStatus.FUNDED,), EscrowStatus.COMPLETED, "completed_at"
        )

        assert applied is False
        assert Escrow.objects.get(id=escrow.id).completed_at is None

    def test_timestamp_is_never_overwritten(self, db, store):
        earlier = timezone.now() - timedelta(hours=1)
        escrow = EscrowFactory(completed_at=earlier)

        applied = store.transition(
            escrow.id, (EscrowStatus.FUNDED,), EscrowStatus.COMPLETED, "completed_at"
        )

        assert applied is False
        assert Escrow.objects.get(id=escrow.id).completed_at == earlier

    def test_unknown_id_does_not_apply(self, db, store):
        assert store.transition("esc_missing000000", OPEN_STATUSES, "released", "released_at") is False


class TestEvents:
    def test_append_and_list_in_order(self, db, store):
        escrow = EscrowFactory()
        now = timezone.now()

        store.append_event(escrow.id, EscrowEventKind.CREATED, escrow.creator, "created", now=now)
        store.append_event(
            escrow.id,
            EscrowEventKind.REFUNDED,
            None,
            "Auto-refunded after 24h timeout",
            now=now + timedelta(hours=24),
        )

        events = store.list_events(escrow.id)

        assert [e.kind for e in events] == [EscrowEventKind.CREATED, EscrowEventKind.REFUNDED]
        assert events[1].actor is None

    def test_same_timestamp_keeps_insertion_order(self, db, store):
        escrow = EscrowFactory()
        now = timezone.now()

        for kind in (EscrowEventKind.CREATED, EscrowEventKind.COMPLETED, EscrowEventKind.RELEASED):
            store.append_event(escrow.id, kind, escrow.creator, now=now)

        assert [e.kind for e in store.list_events(escrow.id)] == [
            EscrowEventKind.CREATED,
            EscrowEventKind.COMPLETED,
            EscrowEventKind.RELEASED,
        ]

    def test_list_events_of_unknown_escrow_is_empty(self, db, store):
        assert store.list_events("esc_missing000000") == []


class TestStats:
    def test_bump_increments(self, db, store):
        before = store.get_stats()

        store.bump_stats(total_created=1, total_volume=Decimal("10.5"))
        store.bump_stats(total_created=1, total_volume=Decimal("0.25"))

        after = store.get_stats()
        assert after.total_created == before.total_created + 2
        assert after.total_volume == before.total_volume + Decimal("10.75")

    def test_bump_reseeds_missing_row(self, db, store):
        EscrowStats.objects.all().delete()

        store.bump_stats(total_disputed=1)

        assert store.get_stats().total_disputed == 1

    def test_unknown_field_rejected(self, db, store):
        with pytest.raises(ValueError):
            store.bump_stats(total_refunded=1)

    def test_empty_bump_is_noop(self, db, store):
        before = store.get_stats().total_created

        store.bump_stats()

        assert store.get_stats().total_created == before


class TestFindExpired:
    def test_returns_open_escrows_past_deadline_oldest_first(self, db, store):
        now = timezone.now()
        newer = EscrowFactory(auto_release_at=now - timedelta(minutes=5))
        older = EscrowFactory(
            status=EscrowStatus.COMPLETED,
            auto_release_at=now - timedelta(hours=3),
        )
        EscrowFactory(auto_release_at=now + timedelta(hours=1))
        EscrowFactory(status=EscrowStatus.DISPUTED, auto_release_at=now - timedelta(hours=1))
        EscrowFactory(status=EscrowStatus.RELEASED, auto_release_at=now - timedelta(hours=1))

        expired = store.find_expired(now, limit=10)

        assert [e.id for e in expired] == [older.id, newer.id]

    def test_deadline_equal_to_now_is_expired(self, db, store):
        now = timezone.now()
        escrow = EscrowFactory(auto_release_at=now)

        assert [e.id for e in store.find_expired(now, limit=10)] == [escrow.id]

    def test_limit(self, db, store):
        now = timezone.now()
        for _ in range(3):
            EscrowFactory(auto_release_at=now - timedelta(hours=1))

        assert len(store.find_expired(now, limit=2)) == 2

    def test_after_continues_behind_the_cursor(self, db, store):
        now = timezone.now()
        deadline = now - timedelta(hours=2)
        tied = sorted(
            (EscrowFactory(auto_release_at=deadline) for _ in range(2)),
            key=lambda escrow: escrow.id,
        )
        later = EscrowFactory(auto_release_at=now - timedelta(hours=1))

        first_page = store.find_expired(now, limit=1)
        second_page = store.find_expired(now, limit=10, after=first_page[-1])

        assert [e.id for e in first_page] == [tied[0].id]
        assert [e.id for e in second_page] == [tied[1].id, later.id]
