"""
Pytest fixtures for ledger tests.

Sections:
    - Account Fixtures: Pre-configured ledger accounts
    - Test Data Fixtures: Idempotency keys and other test data
"""

import uuid
from decimal import Decimal

import pytest

from ledger.models import AccountType
from ledger.services import LedgerService
from ledger.tests.factories import LedgerAccountFactory


# ==========================================================================
# Account Fixtures
# ==========================================================================


@pytest.fixture
def external_account(db):
    """External funding account that can go negative."""
    return LedgerService.external_funding()


@pytest.fixture
def escrow_pool(db):
    """Platform escrow pool. Cannot go negative."""
    return LedgerService.escrow_pool()


@pytest.fixture
def user_account(db):
    """Empty participant balance account."""
    return LedgerAccountFactory(type=AccountType.USER_BALANCE)


@pytest.fixture
def funded_user_account(db):
    """Participant account holding 50.00 from a deposit."""
    account = LedgerService.open_user_account(f"ag_{uuid.uuid4().hex[:16]}")
    LedgerService.deposit(
        account.owner_id,
        Decimal("50"),
        idempotency_key=f"fund-{uuid.uuid4()}",
    )
    return account


@pytest.fixture
def inactive_account(db):
    """Deactivated participant account."""
    return LedgerAccountFactory(type=AccountType.USER_BALANCE, is_active=False)


# ==========================================================================
# Test Data Fixtures
# ==========================================================================


@pytest.fixture
def unique_idempotency_key():
    """Generate a unique idempotency key for testing."""
    return f"test-{uuid.uuid4()}"
