"""
Subscription Conformance Tests

INVARIANTS:

    anchor_expiry(t, monthly)   = 28th of the month after t
    anchor_expiry(t, biAnnual)  = 28th, six months after t
    anchor_expiry(t, annual)    = 28 December of the year after t
    anchor_expiry(t, p) > t, time of day preserved

    extend_expiry(x, p)         = anchor_expiry(x, p)

    0 ≤ prorated_credit ≤ amount paid
    upgrade charge = max(0, new price - credit)

    The expiration check reminds a subscription at most once per calendar day,
    and the access gate never admits a lender past expiry.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal

from mpesewa import (
    MPesewa, ActorContext, Role, TIERS, Tier, Period,
    anchor_expiry, extend_expiry, prorated_credit, upgrade_charge,
)

from tests.helpers import T0, make_subscription


LENDER = ActorContext("lender-1", Role.LENDER, country="kenya", name="Amina Lender")

instants = st.datetimes(min_value=datetime(2020, 1, 1), max_value=datetime(2035, 12, 31))
periods = st.sampled_from(list(Period))
tiers = st.sampled_from(list(Tier))


def months_between(earlier: datetime, later: datetime) -> int:
    return (later.year - earlier.year) * 12 + later.month - earlier.month


class TestExpiryAnchoring:

    @given(instants)
    @settings(max_examples=50)
    def test_monthly_expiry(self, now):
        """
        PROPERTY: Monthly plans expire on the 28th of the following month.
        """
        expiry = anchor_expiry(now, Period.MONTHLY)
        assert expiry.day == 28
        assert months_between(now, expiry) == 1
        assert expiry.time() == now.time()

    @given(instants)
    @settings(max_examples=50)
    def test_bi_annual_expiry(self, now):
        expiry = anchor_expiry(now, Period.BI_ANNUAL)
        assert expiry.day == 28
        assert months_between(now, expiry) == 6

    @given(instants)
    @settings(max_examples=50)
    def test_annual_expiry(self, now):
        expiry = anchor_expiry(now, Period.ANNUAL)
        assert (expiry.year, expiry.month, expiry.day) == (now.year + 1, 12, 28)

    @given(instants, periods)
    @settings(max_examples=50)
    def test_expiry_is_in_the_future(self, now, period):
        """
        PROPERTY: Every anchored expiry lies strictly after the purchase time.
        """
        assert anchor_expiry(now, period) > now

    @given(instants, periods)
    @settings(max_examples=50)
    def test_renewal_extends_from_current_expiry(self, expiry, period):
        """
        PROPERTY: Renewal anchors one period past the current expiry, whenever it runs.
        """
        renewed = extend_expiry(expiry, period)
        assert renewed == anchor_expiry(expiry, period)
        assert renewed > expiry


class TestProrationProperties:

    @given(st.integers(min_value=-400, max_value=800), tiers, periods)
    @settings(max_examples=50)
    def test_credit_bounds(self, hours_left, tier, period):
        """
        PROPERTY: Credit lies between zero and the amount paid.
        """
        amount = TIERS[tier].price(period)
        sub = make_subscription(tier=tier, period=period, amount=amount,
                                expiry_date=T0 + timedelta(hours=hours_left * 24))
        credit = prorated_credit(sub, T0)
        assert Decimal("0") <= credit <= amount

    @given(st.integers(min_value=0, max_value=400), tiers, periods, tiers, periods)
    @settings(max_examples=50)
    def test_charge_formula(self, days_left, old_tier, old_period, new_tier, new_period):
        """
        PROPERTY: charge = max(0, new price - credit).
        """
        sub = make_subscription(tier=old_tier, period=old_period,
                                amount=TIERS[old_tier].price(old_period),
                                expiry_date=T0 + timedelta(days=days_left))
        credit, charge = upgrade_charge(sub, new_tier, new_period, T0)
        assert credit == prorated_credit(sub, T0)
        assert charge == max(Decimal("0"), TIERS[new_tier].price(new_period) - credit)


class TestExpirationCheckProperties:

    @given(st.lists(st.integers(min_value=1, max_value=30), min_size=1, max_size=40))
    @settings(max_examples=50, deadline=None)
    def test_at_most_one_reminder_per_day(self, hour_steps):
        """
        PROPERTY: However often the check runs, each day gets at most one reminder.
        """
        platform = MPesewa("prop", initial_time=T0, verbose=False)
        platform.create_subscription(LENDER, LENDER.user_id, "basic", "monthly").unwrap()
        platform.advance_time(datetime(2025, 4, 20, 0, 0))
        for hours in hour_steps:
            platform.advance_time(platform.current_time + timedelta(hours=hours))
            platform.check_expirations().unwrap()

        per_day = Counter(e.timestamp.date() for e in platform.events_of("subscription_reminder"))
        assert all(count == 1 for count in per_day.values())

    @given(st.lists(st.integers(min_value=1, max_value=20 * 24), min_size=1, max_size=20))
    @settings(max_examples=50, deadline=None)
    def test_gate_closed_after_expiry(self, hour_steps):
        """
        PROPERTY: The access gate admits the lender exactly while now ≤ expiry.
        """
        platform = MPesewa("prop", initial_time=T0, verbose=False)
        sub = platform.create_subscription(LENDER, LENDER.user_id, "basic", "monthly").unwrap()
        for hours in hour_steps:
            platform.advance_time(platform.current_time + timedelta(hours=hours))
            if hours % 3 == 0:
                platform.check_expirations().unwrap()
            eligible = platform.assert_lender_eligible(LENDER.user_id).ok
            assert eligible == (platform.current_time <= sub.expiry_date)
