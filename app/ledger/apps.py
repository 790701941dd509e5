"""
Ledger app configuration.

This app provides the balance ledger that escrow funds move through:
- Participant balance accounts (with referral codes)
- The platform escrow pool
- The external funding account used for deposits
"""

from django.apps import AppConfig


class LedgerConfig(AppConfig):
    """Configuration for the ledger application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "ledger"
    verbose_name = "Ledger"
