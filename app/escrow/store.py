"""
Durable storage for escrows, their event log and aggregate counters.

EscrowStore is the only code that writes escrow tables. Its
``transition()`` is the concurrency primitive of the whole system: a
single ``UPDATE ... WHERE id = ? AND status IN (...)`` that reports
whether this caller won. No in-process locks are needed on top of it.

Database errors are translated to PersistenceFailureError; callers decide
whether that needs compensation.

Usage:
    from escrow.store import EscrowStore

    store = EscrowStore()
    with transaction.atomic():
        if store.transition(escrow_id, ("funded",), "disputed", "disputed_at", now):
            store.append_event(escrow_id, "disputed", actor, reason)
            store.bump_stats(total_disputed=1)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from escrow.exceptions import EscrowNotFoundError, PersistenceFailureError
from escrow.models import Escrow, EscrowEvent, EscrowStats
from escrow.state_machines.states import OPEN_STATUSES

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

logger = logging.getLogger(__name__)

# Counters bump_stats() accepts
STATS_FIELDS = frozenset(
    {"total_created", "total_released", "total_disputed", "total_volume", "total_commission"}
)


class EscrowStore:
    """ORM-backed escrow store."""

    def get(self, escrow_id: str) -> Escrow:
        """
        Load an escrow by id.

        Raises:
            EscrowNotFoundError: If no escrow has this id
        """
        try:
            return Escrow.objects.get(id=escrow_id)
        except Escrow.DoesNotExist:
            raise EscrowNotFoundError(
                f"Escrow {escrow_id} not found",
                details={"escrow_id": escrow_id},
            )

    def put(self, escrow: Escrow) -> Escrow:
        """
        Insert a new escrow.

        Raises:
            PersistenceFailureError: If the id already exists or the write fails
        """
        try:
            with transaction.atomic():
                escrow.save(force_insert=True)
        except IntegrityError as e:
            logger.error(
                "Escrow insert rejected",
                extra={"escrow_id": escrow.id, "error": str(e)},
            )
            raise PersistenceFailureError(details={"escrow_id": escrow.id}) from e
        except DatabaseError as e:
            logger.error(
                "Escrow insert failed",
                extra={"escrow_id": escrow.id, "error": str(e)},
            )
            raise PersistenceFailureError(details={"escrow_id": escrow.id}) from e
        return escrow

    def transition(
        self,
        escrow_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        timestamp_field: str,
        now: datetime | None = None,
    ) -> bool:
        """
        Atomically move an escrow to ``to_status`` if it is in ``from_statuses``.

        Sets ``timestamp_field`` in the same statement, and only when it is
        still empty, so each lifecycle timestamp is written exactly once.

        Returns:
            True if this call performed the transition, False if the escrow
            was not in an expected status (someone else got there first)
        """
        now = now or timezone.now()
        try:
            updated = Escrow.objects.filter(
                id=escrow_id,
                status__in=list(from_statuses),
                **{f"{timestamp_field}__isnull": True},
            ).update(
                status=to_status,
                updated_at=now,
                **{timestamp_field: now},
            )
        except DatabaseError as e:
            logger.error(
                "Escrow status update failed",
                extra={"escrow_id": escrow_id, "to_status": to_status, "error": str(e)},
            )
            raise PersistenceFailureError(details={"escrow_id": escrow_id}) from e
        return updated == 1

    def append_event(
        self,
        escrow_id: str,
        kind: str,
        actor: str | None,
        note: str = "",
        now: datetime | None = None,
    ) -> EscrowEvent:
        """Append an event to the escrow's log."""
        try:
            return EscrowEvent.objects.create(
                escrow_id=escrow_id,
                kind=kind,
                actor=actor,
                note=note,
                created_at=now or timezone.now(),
            )
        except DatabaseError as e:
            logger.error(
                "Escrow event insert failed",
                extra={"escrow_id": escrow_id, "kind": kind, "error": str(e)},
            )
            raise PersistenceFailureError(details={"escrow_id": escrow_id}) from e

    def list_events(self, escrow_id: str) -> list[EscrowEvent]:
        """Events of one escrow in creation order."""
        return list(EscrowEvent.objects.filter(escrow_id=escrow_id).order_by("created_at", "id"))

    def bump_stats(self, **deltas) -> None:
        """
        Increment aggregate counters with ``F()`` expressions.

        Example:
            store.bump_stats(total_created=1, total_volume=escrow.amount)
        """
        unknown = set(deltas) - STATS_FIELDS
        if unknown:
            raise ValueError(f"Unknown stats fields: {sorted(unknown)}")
        if not deltas:
            return

        changes = {name: F(name) + value for name, value in deltas.items()}
        rows = EscrowStats.objects.filter(pk=EscrowStats.SINGLETON_ID)
        try:
            if not rows.update(**changes):
                # Seed row missing (e.g. flushed test database)
                EscrowStats.load()
                rows.update(**changes)
        except DatabaseError as e:
            logger.error(
                "Escrow stats update failed",
                extra={"deltas": {k: str(v) for k, v in deltas.items()}, "error": str(e)},
            )
            raise PersistenceFailureError() from e

    def get_stats(self) -> EscrowStats:
        return EscrowStats.load()

    def find_expired(
        self,
        now: datetime,
        limit: int,
        after: Escrow | None = None,
    ) -> list[Escrow]:
        """
        Escrows past their deadline that are still open, oldest deadline first.

        Ordered by ``(auto_release_at, id)``. Pass the last escrow of the
        previous page as ``after`` to continue behind it.
        """
        queryset = Escrow.objects.filter(
            status__in=list(OPEN_STATUSES),
            auto_release_at__lte=now,
        )
        if after is not None:
            queryset = queryset.filter(
                Q(auto_release_at__gt=after.auto_release_at)
                | Q(auto_release_at=after.auto_release_at, id__gt=after.id)
            )
        return list(queryset.order_by("auto_release_at", "id")[:limit])
