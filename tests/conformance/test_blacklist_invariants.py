"""
Blacklist Conformance Tests

INVARIANTS after any sequence of scans, reports and removals:

    ∀ borrower b:
        |{e : e.borrower_id = b, e.status ≠ removed}| ≤ 1
        b ∈ blacklisted_users ⟺ ∃ e : e.borrower_id = b, e.status ≠ removed
        blacklisted_users[b].entry_id names that entry

    e.status = removed ⟹ e.reviewed_by ≠ None
    a (ledger, due date) pair produces at most one automatic entry

Scans never touch ledgers.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from collections import Counter
from datetime import timedelta

from mpesewa import MPesewa, ActorContext, Role, BlacklistStatus, BlacklistReason

from tests.helpers import T0


ADMIN = ActorContext("admin-1", Role.ADMIN, country="kenya", name="Platform Admin")
LENDER = ActorContext("lender-1", Role.LENDER, country="kenya", name="Amina Lender")

loans = st.lists(
    st.tuples(st.integers(min_value=0, max_value=3), st.integers(min_value=0, max_value=2)),
    min_size=1, max_size=8,
)
actions = st.lists(
    st.one_of(
        st.tuples(st.just("advance"), st.integers(min_value=1, max_value=40)),
        st.tuples(st.just("scan"), st.just(0)),
        st.tuples(st.just("remove"), st.integers(min_value=0, max_value=7)),
        st.tuples(st.just("request"), st.integers(min_value=0, max_value=7)),
    ),
    min_size=1, max_size=15,
)


def build_platform(loan_specs):
    platform = MPesewa("prop", initial_time=T0, verbose=False)
    platform.create_subscription(LENDER, LENDER.user_id, "super", "annual").unwrap()
    for borrower, group in loan_specs:
        # Duplicate (borrower, group) pairs are rejected, which is fine here
        platform.create_loan(LENDER, {
            'borrower_id': f"borrower-{borrower}",
            'group_id': f"group-{group}",
            'amount_borrowed': "100",
        })
    return platform


def apply_actions(platform, steps):
    for action, arg in steps:
        if action == "advance":
            platform.advance_time(platform.current_time + timedelta(days=arg))
        elif action == "scan":
            platform.refresh_ledgers().unwrap()
            platform.scan_for_defaults().unwrap()
        else:
            entries = sorted(platform.blacklist_entries)
            if not entries:
                continue
            entry_id = entries[arg % len(entries)]
            if action == "remove":
                platform.verify_blacklist_entry(ADMIN, entry_id).unwrap()
            else:
                platform.request_blacklist_removal(ADMIN, entry_id)


def assert_blacklist_consistent(platform):
    in_force = [e for e in platform.blacklist_entries.values() if e.status is not BlacklistStatus.REMOVED]
    per_borrower = Counter(e.borrower_id for e in in_force)
    assert all(count == 1 for count in per_borrower.values())
    assert set(per_borrower) == set(platform.blacklisted_users)
    for entry in in_force:
        assert platform.blacklisted_users[entry.borrower_id].entry_id == entry.id

    for entry in platform.blacklist_entries.values():
        if entry.status is BlacklistStatus.REMOVED:
            assert entry.reviewed_by is not None

    automatic = Counter(
        (e.ledger_id, e.date_due) for e in platform.blacklist_entries.values()
        if e.reason is BlacklistReason.DEFAULT
    )
    assert all(count == 1 for count in automatic.values())


class TestBlacklistProperties:

    @given(loans, actions)
    @settings(max_examples=50, deadline=None)
    def test_lookup_matches_entries(self, loan_specs, steps):
        """
        PROPERTY: The lookup table mirrors the entries in force, one per borrower.
        """
        platform = build_platform(loan_specs)
        apply_actions(platform, steps)
        assert_blacklist_consistent(platform)

    @given(loans, st.integers(min_value=60, max_value=200))
    @settings(max_examples=50, deadline=None)
    def test_repeated_scans_create_nothing_new(self, loan_specs, days):
        """
        PROPERTY: A second scan at the same time is a no-op.
        """
        platform = build_platform(loan_specs)
        platform.advance_time(T0 + timedelta(days=7 + days))
        first = platform.scan_for_defaults().unwrap()
        assert platform.scan_for_defaults().unwrap() == []
        assert len(first) == len({f"borrower-{b}" for b, _ in loan_specs})

    @given(loans, st.integers(min_value=0, max_value=200))
    @settings(max_examples=50, deadline=None)
    def test_scan_leaves_ledgers_alone(self, loan_specs, days):
        """
        PROPERTY: Scanning reads ledgers but never rewrites them.
        """
        platform = build_platform(loan_specs)
        platform.advance_time(T0 + timedelta(days=days))
        before = dict(platform.ledgers)
        platform.scan_for_defaults().unwrap()
        assert platform.ledgers == before
