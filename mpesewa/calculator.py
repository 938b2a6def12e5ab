"""
calculator.py - Loan Terms Calculator

Pure functions converting a principal and a number of days into the
interest, total, daily installment and penalty figures of an M-Pesewa loan.

Key Formulas:
    interest = principal * 0.10 * (days / 7)        (10% per week, pro-rated)
    total    = principal + interest
    daily    = total / days
    penalty  = amount * 0.05 * overdue_days         (5% per day past the term)
    default  = overdue_days >= 60

Days are clamped to [1, 7]: a loan term can never exceed one week.

There are no error conditions. A NaN principal propagates as NaN through
every output; callers validate amounts upstream (see loans.py).

The quote_grid() helper is the only float code path. It produces numpy
arrays for side-by-side comparison tables and is never used for amounts
that are stored on a ledger.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Sequence

import numpy as np

from .core import (
    WEEKLY_INTEREST_RATE, DAILY_PENALTY_RATE, LOAN_TERM_DAYS, MIN_TERM_DAYS,
    DEFAULT_THRESHOLD_DAYS,
    to_decimal,
)
from .subscriptions import TIERS, Tier


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanQuote:
    """
    Terms of a loan of `principal` repaid over `days` days.

    penalty is a display-only preview: what the loan would accrue in
    penalties if it ran to the end of the 7-day term instead of `days`.
    It is never applied to a ledger.
    """
    principal: Decimal
    days: int
    interest: Decimal
    total: Decimal
    daily: Decimal
    penalty: Decimal
    interest_rate_pct: Decimal
    penalty_rate_pct: Decimal


@dataclass(frozen=True, slots=True)
class PenaltyQuote:
    """Penalty accrued on `amount` after `overdue_days` days past due."""
    penalty: Decimal
    total: Decimal
    daily_penalty: Decimal
    is_default: bool


@dataclass(frozen=True, slots=True)
class ScheduleEntry:
    """One day of a repayment schedule."""
    day: int
    date: datetime
    amount_due: Decimal
    cumulative: Decimal
    remaining: Decimal
    is_penalty_day: bool


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def clamp_days(days: int) -> int:
    """Clamp a repayment period to [1, 7] days."""
    return min(LOAN_TERM_DAYS, max(MIN_TERM_DAYS, int(days)))


def calculate(principal: Any, days: int) -> LoanQuote:
    """
    Calculate interest, total and daily installment for a loan.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Args:
        principal: Amount borrowed
        days: Repayment days (clamped to [1, 7])

    Returns:
        LoanQuote with unrounded Decimal figures.

    Example:
        quote = calculate(Decimal("1000"), 7)
        # interest=100, total=1100, daily=157.142857...
    """
    principal = to_decimal(principal)
    days = clamp_days(days)

    interest = principal * WEEKLY_INTEREST_RATE * (Decimal(days) / Decimal(LOAN_TERM_DAYS))
    total = principal + interest
    daily = total / Decimal(days)

    penalty = Decimal("0")
    if days < LOAN_TERM_DAYS:
        penalty = principal * DAILY_PENALTY_RATE * Decimal(LOAN_TERM_DAYS - days)

    return LoanQuote(
        principal=principal,
        days=days,
        interest=interest,
        total=total,
        daily=daily,
        penalty=penalty,
        interest_rate_pct=WEEKLY_INTEREST_RATE * 100,
        penalty_rate_pct=DAILY_PENALTY_RATE * 100,
    )


def calculate_interest(principal: Any, days: int = LOAN_TERM_DAYS) -> Decimal:
    """Interest component of calculate()."""
    return calculate(principal, days).interest


def calculate_penalty(amount: Any, overdue_days: int) -> PenaltyQuote:
    """
    Calculate the penalty accrued on an overdue amount.

    PURE FUNCTION - All inputs explicit.

    Args:
        amount: Amount the penalty accrues on (the principal, on a ledger)
        overdue_days: Whole days past the due date

    Returns:
        PenaltyQuote. No penalty accrues for overdue_days <= 0.
    """
    amount = to_decimal(amount)
    daily_penalty = amount * DAILY_PENALTY_RATE
    is_default = overdue_days >= DEFAULT_THRESHOLD_DAYS

    if overdue_days <= 0:
        return PenaltyQuote(
            penalty=Decimal("0"),
            total=amount,
            daily_penalty=daily_penalty,
            is_default=is_default,
        )

    penalty = daily_penalty * Decimal(overdue_days)
    return PenaltyQuote(
        penalty=penalty,
        total=amount + penalty,
        daily_penalty=daily_penalty,
        is_default=is_default,
    )


def generate_repayment_schedule(
    amount: Any,
    days: int,
    start_date: datetime,
) -> List[ScheduleEntry]:
    """
    Generate the daily repayment schedule of a loan.

    The schedule has one entry per repayment day. Entry i falls i days after
    start_date and asks for the same daily installment. The function is a
    pure function of its inputs and can be regenerated at any time.

    Args:
        amount: Principal
        days: Repayment days (clamped to [1, 7])
        start_date: Date the loan was taken

    Returns:
        List of ScheduleEntry ordered by day.
    """
    quote = calculate(amount, days)
    schedule = []
    for i in range(1, quote.days + 1):
        paid = quote.daily * i
        schedule.append(ScheduleEntry(
            day=i,
            date=start_date + timedelta(days=i),
            amount_due=quote.daily,
            cumulative=paid,
            remaining=quote.total - paid,
            is_penalty_day=i > LOAN_TERM_DAYS,
        ))
    return schedule


# ============================================================================
# TIER LIMITS
# ============================================================================

def get_tier_limit(tier: Any) -> Decimal:
    """Per-loan ceiling of a subscription tier (0 for unknown tiers)."""
    try:
        definition = TIERS[Tier(tier)]
    except ValueError:
        return Decimal("0")
    return definition.weekly_limit


def exceeds_tier_limit(tier: Any, amount: Any) -> bool:
    """True if amount is above the tier's per-loan ceiling."""
    return to_decimal(amount) > get_tier_limit(tier)


# ============================================================================
# VECTORIZED PREVIEW
# ============================================================================

def quote_grid(
    principals: Sequence[float],
    days: Sequence[int],
) -> Dict[str, np.ndarray]:
    """
    Float preview of loan terms for every (principal, days) pair.

    Rows follow `principals`, columns follow `days`. Uses the same formulas
    as calculate(), broadcast over numpy arrays.

    Returns:
        Dict with 'principal', 'days', 'interest', 'total' and 'daily'
        arrays, each of shape (len(principals), len(days)).

    Example:
        grid = quote_grid([1000, 5000, 10000], [1, 3, 7])
        grid['total'][0, 2]  # 1100.0
    """
    p = np.asarray(principals, dtype=float)[:, np.newaxis]
    d = np.clip(np.asarray(days, dtype=float), MIN_TERM_DAYS, LOAN_TERM_DAYS)[np.newaxis, :]

    interest = p * float(WEEKLY_INTEREST_RATE) * (d / LOAN_TERM_DAYS)
    total = p + interest
    daily = total / d

    principal_grid, days_grid = np.broadcast_arrays(p, d)
    return {
        'principal': principal_grid.copy(),
        'days': days_grid.copy(),
        'interest': interest,
        'total': total,
        'daily': daily,
    }
