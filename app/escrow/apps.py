"""
Escrow app configuration.

This app holds the escrow lifecycle:
- Escrow records, their event log and aggregate counters
- The guarded state machine (fund → complete → release / dispute / refund)
- The periodic sweeper that refunds expired escrows
"""

from django.apps import AppConfig


class EscrowConfig(AppConfig):
    """Configuration for the escrow application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Escrow"
