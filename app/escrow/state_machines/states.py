"""
State enums for escrow models.

Escrow States:
    funded → completed → released
    funded → released
    funded/completed → disputed
    funded/completed → refunded (timeout, system only)

Terminal states: RELEASED, REFUNDED
Semi-terminal: DISPUTED (no automated exit; resolution is out of band)
"""

from django.db import models


class EscrowStatus(models.TextChoices):
    """
    States for the Escrow model lifecycle.

    State Flow (Happy Path):
        FUNDED → COMPLETED → RELEASED

    Shortcut:
        FUNDED → RELEASED (creator releases without completion mark)

    Dispute Flow:
        FUNDED/COMPLETED → DISPUTED

    Timeout Flow:
        FUNDED/COMPLETED → REFUNDED
    """

    FUNDED = "funded", "Funded"
    COMPLETED = "completed", "Completed"
    DISPUTED = "disputed", "Disputed"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class EscrowEventKind(models.TextChoices):
    """Kinds of entries in an escrow's append-only event log."""

    CREATED = "created", "Created"
    COMPLETED = "completed", "Completed"
    RELEASED = "released", "Released"
    DISPUTED = "disputed", "Disputed"
    REFUNDED = "refunded", "Refunded"


# Statuses from which an escrow can still settle, be disputed or time out
OPEN_STATUSES = (EscrowStatus.FUNDED, EscrowStatus.COMPLETED)

TERMINAL_STATUSES = (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)
