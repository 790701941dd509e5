"""
Workers for background escrow processing.

- Sweeper: Refunds escrows whose auto-release deadline has passed

Usage:
    from escrow.workers import sweep_expired_escrows

    sweep_expired_escrows.delay()
"""

from escrow.workers.sweeper import run_sweep, sweep_expired_escrows

__all__ = [
    "run_sweep",
    "sweep_expired_escrows",
]
