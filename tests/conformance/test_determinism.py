"""
Determinism Conformance Tests

INVARIANT: Given identical inputs, the platform produces identical outputs.

    ∀ operation sequences S:
        platform1.apply(S) = platform2.apply(S)

This guarantees:
- Ids are reproducible (sequence per prefix, no randomness)
- Stored collections are byte-for-byte comparable
- A reloaded platform continues exactly where the original stopped
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta

from mpesewa import MPesewa, ActorContext, Role, MemoryStorage

from tests.helpers import T0


ADMIN = ActorContext("admin-1", Role.ADMIN, country="kenya", name="Platform Admin")
LENDER = ActorContext("lender-1", Role.LENDER, country="kenya", name="Amina Lender")

steps = st.lists(
    st.one_of(
        st.tuples(st.just("loan"), st.integers(min_value=0, max_value=5), st.integers(min_value=1, max_value=400)),
        st.tuples(st.just("repay"), st.integers(min_value=0, max_value=9), st.integers(min_value=1, max_value=600)),
        st.tuples(st.just("advance"), st.integers(min_value=1, max_value=30), st.just(0)),
        st.tuples(st.just("scan"), st.just(0), st.just(0)),
        st.tuples(st.just("expire"), st.just(0), st.just(0)),
        st.tuples(st.just("renew"), st.just(0), st.just(0)),
    ),
    min_size=1, max_size=20,
)


def fresh_platform(name, storage=None):
    platform = MPesewa(name, initial_time=T0, verbose=False, storage=storage or MemoryStorage())
    platform.create_subscription(LENDER, LENDER.user_id, "premium", "monthly").unwrap()
    return platform


def apply_step(platform, step):
    action, a, b = step
    if action == "loan":
        platform.create_loan(LENDER, {'borrower_id': f"borrower-{a}", 'amount_borrowed': b})
    elif action == "repay":
        ledger_ids = sorted(platform.ledgers)
        if ledger_ids:
            platform.record_repayment(LENDER, ledger_ids[a % len(ledger_ids)], b)
    elif action == "advance":
        platform.advance_time(platform.current_time + timedelta(days=a))
    elif action == "scan":
        platform.refresh_ledgers().unwrap()
        platform.scan_for_defaults().unwrap()
    elif action == "expire":
        platform.check_expirations().unwrap()
    else:
        platform.renew_subscription(LENDER, "sub-000001")


class TestDeterminismProperties:
    """Property-based determinism tests."""

    @given(steps)
    @settings(max_examples=50, deadline=None)
    def test_identical_sequences_produce_identical_state(self, sequence):
        """
        PROPERTY: Two platforms applying the same operations store the same collections.
        """
        storage1, storage2 = MemoryStorage(), MemoryStorage()
        platform1 = fresh_platform("one", storage1)
        platform2 = fresh_platform("two", storage2)

        for step in sequence:
            apply_step(platform1, step)
            apply_step(platform2, step)

        assert platform1.ledgers == platform2.ledgers
        assert platform1.blacklist_entries == platform2.blacklist_entries
        assert platform1.subscriptions == platform2.subscriptions
        assert [e.kind for e in platform1.event_log] == [e.kind for e in platform2.event_log]
        for key in storage1.keys():
            assert storage1.load(key) == storage2.load(key)

    @given(steps, steps)
    @settings(max_examples=30, deadline=None)
    def test_reload_continues_identically(self, before, after):
        """
        PROPERTY: Saving, reloading and continuing equals never stopping.
        """
        storage = MemoryStorage()
        original = fresh_platform("original", storage)
        for step in before:
            apply_step(original, step)

        reloaded = MPesewa("reloaded", initial_time=original.current_time,
                           verbose=False, storage=MemoryStorage({k: storage.load(k) for k in storage.keys()})).load()

        for step in after:
            apply_step(original, step)
            apply_step(reloaded, step)

        assert reloaded.ledgers == original.ledgers
        assert reloaded.blacklist_entries == original.blacklist_entries
        assert reloaded.blacklisted_users == original.blacklisted_users
        assert reloaded.subscriptions == original.subscriptions
        assert reloaded.subscription_transactions == original.subscription_transactions
        assert reloaded.lenders == original.lenders
