"""
test_dashboards.py - Unit Tests for Dashboard Views

Tests cover:
1. Role and country scoping of ledgers
2. Search
3. Ledger, blacklist and subscription statistics
4. Pagination
"""

import pytest
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from mpesewa import (
    ActorContext, Role, ValidationError, SubscriptionStatus,
    filter_ledgers_for_actor, search_ledgers, ledger_stats, blacklist_stats,
    subscription_stats, paginate, recompute, apply_repayment,
)
from mpesewa.blacklist import build_default_entry, remove_entry

from tests.helpers import T0, make_record, make_subscription


DUE = T0 + timedelta(days=7)


@pytest.fixture
def ledgers():
    return [
        make_record("1000", loan_id="l-1", lender_id="lender-1", borrower_id="b-1",
                    country="kenya", borrower_name="Kofi Mensah", category="food"),
        make_record("500", loan_id="l-2", lender_id="lender-2", borrower_id="b-1",
                    country="kenya", borrower_name="Kofi Mensah", borrower_phone="0700111222"),
        make_record("800", loan_id="l-3", lender_id="lender-1", borrower_id="b-2",
                    country="ghana", borrower_name="Ama Owusu", category="fuel"),
    ]


class TestFilterLedgers:

    def test_lender_sees_own_ledgers_in_country(self, ledgers):
        actor = ActorContext("lender-1", Role.LENDER, country="kenya")
        assert [l.id for l in filter_ledgers_for_actor(ledgers, actor)] == ["l-1"]

    def test_borrower_sees_own_ledgers(self, ledgers):
        actor = ActorContext("b-1", Role.BORROWER, country="kenya")
        assert [l.id for l in filter_ledgers_for_actor(ledgers, actor)] == ["l-1", "l-2"]

    def test_unscoped_admin_sees_everything(self, ledgers):
        actor = ActorContext("admin-1", Role.ADMIN)
        assert len(filter_ledgers_for_actor(ledgers, actor)) == 3

    def test_country_admin_sees_country(self, ledgers):
        actor = ActorContext("admin-1", Role.ADMIN, country="ghana")
        assert [l.id for l in filter_ledgers_for_actor(ledgers, actor)] == ["l-3"]

    def test_status_filter(self, ledgers):
        actor = ActorContext("admin-1", Role.ADMIN)
        overdue = [recompute(ledgers[0], DUE + timedelta(days=3)), *ledgers[1:]]
        assert [l.id for l in filter_ledgers_for_actor(overdue, actor, status="overdue")] == ["l-1"]
        assert len(filter_ledgers_for_actor(overdue, actor, status="all")) == 3


class TestSearch:

    def test_search_by_name_phone_and_category(self, ledgers):
        assert [l.id for l in search_ledgers(ledgers, "kofi")] == ["l-1", "l-2"]
        assert [l.id for l in search_ledgers(ledgers, "0700")] == ["l-2"]
        assert [l.id for l in search_ledgers(ledgers, "fuel")] == ["l-3"]

    def test_empty_query_returns_everything(self, ledgers):
        assert len(search_ledgers(ledgers, "")) == 3


class TestStats:

    def test_ledger_stats(self, ledgers):
        now = DUE + timedelta(days=2)
        cleared = apply_repayment(ledgers[1], "550", None, T0 + timedelta(days=1))
        records = [recompute(ledgers[0], now), cleared, ledgers[2]]
        stats = ledger_stats(records)
        assert stats.total == 3
        assert stats.overdue == 1
        assert stats.cleared == 1
        assert stats.active == 1
        assert stats.total_borrowed == Decimal("2300")
        assert stats.total_interest == Decimal("230")
        assert stats.total_penalty == Decimal("100")
        assert stats.total_repaid == Decimal("550")
        assert stats.outstanding == Decimal("1200") + Decimal("880")

    def test_blacklist_stats_count_only_entries_in_force(self, ledgers):
        now = DUE + timedelta(days=65)
        admin = ActorContext("admin-1", Role.ADMIN)
        first = build_default_entry("bl-1", recompute(ledgers[0], now), now)
        second = remove_entry(build_default_entry("bl-2", recompute(ledgers[2], now), now), admin, "paid", now)
        stats = blacklist_stats([first, second])
        assert stats.total == 2
        assert stats.active == 1
        assert stats.removed == 1
        assert stats.total_overdue == first.amount_overdue
        assert stats.average_days_overdue == Decimal("65")
        assert stats.by_country == {"kenya": 1}
        assert stats.by_reason == {"default": 1}

    def test_subscription_stats(self):
        active = make_subscription(expiry_date=T0 + timedelta(days=5))
        expired = replace(make_subscription(id="sub-2", lender_id="lender-2"),
                          status=SubscriptionStatus.EXPIRED)
        stats = subscription_stats([active, expired], [], T0)
        assert stats.active == 1
        assert stats.expired == 1
        assert stats.renewals_due == 1
        assert stats.by_tier == {"basic": 1}
        assert stats.revenue_this_month == Decimal("0")


class TestPaginate:

    def test_pages(self):
        page = paginate(list(range(45)), page=3, page_size=20)
        assert page.items == list(range(40, 45))
        assert page.total_pages == 3
        assert page.has_previous
        assert not page.has_next

    def test_empty_list_has_one_page(self):
        page = paginate([], page=1)
        assert page.items == []
        assert page.total_pages == 1

    def test_page_past_end_is_empty(self):
        assert paginate(list(range(5)), page=4, page_size=2).items == []

    @pytest.mark.parametrize("page,size", [(0, 20), (1, 0)])
    def test_invalid_arguments(self, page, size):
        with pytest.raises(ValidationError):
            paginate([1, 2, 3], page=page, page_size=size)
