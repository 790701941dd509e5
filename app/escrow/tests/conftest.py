"""
Pytest fixtures for escrow tests.

Sections:
    - Account Fixtures: Participant balance accounts in the ledger app
    - Service Fixtures: EscrowService and its collaborators
"""

from decimal import Decimal

import pytest

from escrow.services import EscrowService
from escrow.store import EscrowStore
from escrow.tests.helpers import open_account


# ==========================================================================
# Account Fixtures
# ==========================================================================


@pytest.fixture
def creator(db):
    """Creator account holding 100.00."""
    return open_account("ag_creator", Decimal("100"), referral_code="CREATOR")


@pytest.fixture
def counterparty(db):
    """Empty counterparty account."""
    return open_account("ag_worker")


@pytest.fixture
def referrer(db):
    """Empty account owning the referral code REFCODE."""
    return open_account("ag_referrer", referral_code="REFCODE")


@pytest.fixture
def referred_creator(db, referrer):
    """Creator account holding 100.00 whose stored referrer is ``referrer``."""
    return open_account("ag_referred", Decimal("100"), referred_by=referrer.owner_id)


# ==========================================================================
# Service Fixtures
# ==========================================================================


@pytest.fixture
def store():
    return EscrowStore()


@pytest.fixture
def service(db):
    """EscrowService with the default ledger adapters and settings."""
    return EscrowService()


@pytest.fixture
def funded_escrow(service, creator, counterparty):
    """A $10 escrow from ``creator`` to ``counterparty``, 24h timeout."""
    result = service.create(
        creator=creator.owner_id,
        counterparty=counterparty.owner_id,
        amount="10.00",
        description="Summarise the quarterly report",
        timeout_hours=24,
    )
    assert result.success, result.error
    return result.data
