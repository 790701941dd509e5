"""
Celery tasks for the escrow app.

The tasks are defined in escrow.workers and re-exported here so that
Celery's autodiscover finds them.
"""

from escrow.workers import sweep_expired_escrows  # noqa: F401
