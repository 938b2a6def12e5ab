"""
Calculation Conformance Tests

INVARIANT: Loan figures follow the published rates exactly.

    interest(P, d) = P × 0.10 × (d / 7)        d clamped to [1, 7]
    total(P, d)    = P + interest(P, d)
    daily(P, d)    = total(P, d) / d
    penalty(A, n)  = A × 0.05 × n              n > 0, else 0
    is_default(n)  ⟺ n ≥ 60

All arithmetic is Decimal; no float enters a money figure.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from mpesewa import calculate, calculate_penalty, DEFAULT_THRESHOLD_DAYS


amounts = st.decimals(min_value=Decimal("1"), max_value=Decimal("1000000"), places=2,
                      allow_nan=False, allow_infinity=False)


class TestInterestProperties:

    @given(amounts, st.integers(min_value=-5, max_value=30))
    @settings(max_examples=50)
    def test_quote_formulas(self, principal, days):
        """
        PROPERTY: interest, total and daily follow the formulas for the clamped term.
        """
        quote = calculate(principal, days)
        d = min(7, max(1, days))

        assert quote.days == d
        assert quote.interest == principal * Decimal("0.10") * (Decimal(d) / Decimal(7))
        assert quote.total == principal + quote.interest
        assert quote.daily == quote.total / Decimal(d)

    @given(amounts)
    @settings(max_examples=50)
    def test_full_term_interest_is_ten_percent(self, principal):
        """
        PROPERTY: A 7-day loan costs exactly 10% of principal.
        """
        assert calculate(principal, 7).interest == principal * Decimal("0.10")

    @given(amounts, st.integers(min_value=1, max_value=6))
    @settings(max_examples=50)
    def test_shorter_terms_cost_less(self, principal, days):
        """
        PROPERTY: Interest grows with the term.
        """
        assert calculate(principal, days).interest < calculate(principal, days + 1).interest

    @given(amounts, st.integers(min_value=1, max_value=7))
    @settings(max_examples=50)
    def test_figures_are_decimal(self, principal, days):
        quote = calculate(principal, days)
        for value in (quote.interest, quote.total, quote.daily, quote.penalty):
            assert isinstance(value, Decimal)


class TestPenaltyProperties:

    @given(amounts, st.integers(min_value=-30, max_value=400))
    @settings(max_examples=50)
    def test_penalty_formula(self, amount, overdue_days):
        """
        PROPERTY: penalty = amount × 5% × overdue days, never negative.
        """
        quote = calculate_penalty(amount, overdue_days)
        expected = amount * Decimal("0.05") * overdue_days if overdue_days > 0 else Decimal("0")
        assert quote.penalty == expected
        assert quote.total == amount + quote.penalty
        assert quote.penalty >= 0

    @given(amounts, st.integers(min_value=0, max_value=400))
    @settings(max_examples=50)
    def test_default_threshold(self, amount, overdue_days):
        """
        PROPERTY: A debt is a default exactly from 60 days overdue.
        """
        assert calculate_penalty(amount, overdue_days).is_default == (overdue_days >= DEFAULT_THRESHOLD_DAYS)

    def test_threshold_boundary(self):
        assert not calculate_penalty("100", 59).is_default
        assert calculate_penalty("100", 60).is_default
