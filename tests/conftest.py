"""
conftest.py - Shared pytest fixtures for M-Pesewa tests

Provides common fixtures used across unit, functional and conformance tests:
- Actors (admin, lenders, borrowers) scoped to one country
- Platforms (empty, with a subscribed lender, with a ledger)
- Factories for loans and subscriptions
"""

import pytest
from datetime import timedelta

from mpesewa import MPesewa, ActorContext, Role, MemoryStorage

from tests.helpers import T0


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def admin():
    return ActorContext("admin-1", Role.ADMIN, country="kenya", name="Platform Admin")


@pytest.fixture
def lender():
    return ActorContext("lender-1", Role.LENDER, country="kenya", name="Amina Lender")


@pytest.fixture
def other_lender():
    return ActorContext("lender-2", Role.LENDER, country="kenya", name="Baraka Lender")


@pytest.fixture
def borrower():
    return ActorContext("borrower-1", Role.BORROWER, country="kenya", name="Kofi Borrower")


# =============================================================================
# PLATFORMS
# =============================================================================

@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def platform(storage):
    """Empty platform at T0."""
    return MPesewa("test", initial_time=T0, verbose=False, storage=storage)


@pytest.fixture
def subscribed_platform(platform, lender):
    """Platform where lender-1 holds a basic monthly subscription bought at T0."""
    platform.create_subscription(lender, lender.user_id, "basic", "monthly", "mpesa").unwrap()
    return platform


@pytest.fixture
def loan_factory(lender):
    """Create a loan on a platform, returning the ledger record."""
    counter = {'n': 0}

    def create(platform, amount="1000", actor=None, **fields):
        counter['n'] += 1
        data = {
            'borrower_id': fields.pop('borrower_id', f"borrower-{counter['n']}"),
            'borrower_name': fields.pop('borrower_name', f"Borrower {counter['n']}"),
            'amount_borrowed': amount,
            'group_id': fields.pop('group_id', "group-1"),
            **fields,
        }
        return platform.create_loan(actor or lender, data).unwrap()
    return create


@pytest.fixture
def ledger_platform(subscribed_platform, loan_factory):
    """Subscribed platform with one 1000 loan to borrower-1 created at T0."""
    loan_factory(subscribed_platform, "1000", borrower_id="borrower-1")
    return subscribed_platform


@pytest.fixture
def defaulted_platform(ledger_platform):
    """ledger_platform moved 65 days past the loan's due date and scanned."""
    ledger_platform.advance_time(T0 + timedelta(days=7 + 65))
    ledger_platform.refresh_ledgers().unwrap()
    ledger_platform.scan_for_defaults().unwrap()
    return ledger_platform
