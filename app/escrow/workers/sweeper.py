"""
Auto-release sweeper for expired escrows.

The sweep is a reconciliation scan, not a timer per escrow: every run picks
up all open escrows whose ``auto_release_at`` has passed and refunds them.
A sweeper that was down for hours catches up on its next run, and running
it twice is harmless because the guarded status update lets only one
refund through.

Tasks:
- sweep_expired_escrows: Periodic task (celery-beat) plus one run at worker start

Usage:
    from escrow.workers import sweep_expired_escrows

    sweep_expired_escrows.delay()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from celery import shared_task
from celery.signals import worker_ready
from django.conf import settings
from django.utils import timezone

from escrow.services import EscrowService

if TYPE_CHECKING:
    from datetime import datetime

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum escrows refunded per run; the rest are picked up next time
DEFAULT_BATCH_SIZE = 500


# =============================================================================
# Sweep
# =============================================================================


def run_sweep(service: EscrowService | None = None, limit: int | None = None) -> dict:
    """
    Refund every expired open escrow, one at a time.

    A failing candidate is logged and counted; the batch carries on.
    Candidates that another caller settled in the meantime come back as
    INVALID_STATE and are counted as skipped.

    ``limit`` bounds how many candidates a run settles, not how many it
    looks at: failed candidates stay expired and would otherwise fill every
    batch, so the scan pages past them until the batch is full or no
    expired escrow is left.

    Returns:
        Dict with scanned, refunded, failed and skipped counts
    """
    service = service or EscrowService()
    now = timezone.now()
    limit = limit or getattr(settings, "ESCROW_SWEEP_BATCH_SIZE", DEFAULT_BATCH_SIZE)

    stats = {"scanned": 0, "refunded": 0, "failed": 0, "skipped": 0}

    for escrow in _expired_candidates(service, now, limit, stats):
        stats["scanned"] += 1
        try:
            result = service.auto_refund(escrow.id)
        except Exception as e:
            stats["failed"] += 1
            logger.error(
                f"Unexpected error refunding expired escrow: {e}",
                extra={"escrow_id": escrow.id, "error": str(e)},
                exc_info=True,
            )
            continue

        if result.success:
            stats["refunded"] += 1
            logger.info(
                "Expired escrow refunded",
                extra={
                    "escrow_id": escrow.id,
                    "creator": escrow.creator,
                    "amount": str(escrow.net_to_counterparty),
                },
            )
        elif result.error_code == "INVALID_STATE":
            stats["skipped"] += 1
            logger.info(
                "Expired escrow already settled, skipping",
                extra={"escrow_id": escrow.id},
            )
        else:
            stats["failed"] += 1
            logger.error(
                f"Failed to refund expired escrow: {result.error}",
                extra={"escrow_id": escrow.id, "error_code": result.error_code},
            )

    return stats


def _expired_candidates(service: EscrowService, now: datetime, limit: int, stats: dict):
    """Yield expired escrows page by page until ``limit`` of them have settled."""
    after = None
    while True:
        page = service.store.find_expired(now, limit, after=after)
        for escrow in page:
            if stats["refunded"] + stats["skipped"] >= limit:
                return
            yield escrow
        if len(page) < limit:
            return
        after = page[-1]


@shared_task(bind=True)
def sweep_expired_escrows(self, batch_size: int | None = None) -> dict:
    """
    Periodic entry point for the expired escrow sweep.

    Scheduled by celery-beat (see migration 0003) and queued once whenever
    a worker starts.
    """
    logger.info("Starting expired escrow sweep")
    stats = run_sweep(limit=batch_size)
    logger.info(
        f"Expired escrow sweep complete: refunded {stats['refunded']} of {stats['scanned']}",
        extra=stats,
    )
    return stats


@worker_ready.connect
def sweep_on_worker_ready(sender=None, **kwargs):
    """Catch up on deadlines that passed while no worker was running."""
    logger.info("Worker ready, queueing expired escrow sweep")
    sweep_expired_escrows.delay()
