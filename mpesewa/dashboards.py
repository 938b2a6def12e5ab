"""
dashboards.py - Read-Only Views over Ledgers, Blacklist and Subscriptions

Country-scoped filtering, search, summary statistics and pagination for
the lender, borrower and admin dashboards. Everything here is a pure
function of the records passed in; nothing is rendered.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from .core import REMINDER_WINDOW_DAYS, ActorContext, Role, ValidationError
from .loans import LoanRecord, LoanStatus
from .blacklist import BlacklistEntry, BlacklistStatus
from .subscriptions import Subscription, SubscriptionStatus, SubscriptionTransaction


T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20


# ============================================================================
# LEDGERS
# ============================================================================

def filter_ledgers_for_actor(
    loans: Iterable[LoanRecord],
    actor: ActorContext,
    group_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[LoanRecord]:
    """
    Ledgers visible to an actor.

    Lenders see the ledgers they extended, borrowers the ledgers they owe.
    Admins see every ledger. When the actor has a country, only that
    country's ledgers are shown.
    """
    result = []
    for loan in loans:
        if actor.country and loan.country != actor.country:
            continue
        if actor.role is Role.LENDER and loan.lender_id != actor.user_id:
            continue
        if actor.role is Role.BORROWER and loan.borrower_id != actor.user_id:
            continue
        if group_id is not None and loan.group_id != group_id:
            continue
        if status is not None and status != 'all' and loan.status.value != status:
            continue
        result.append(loan)
    return result


def search_ledgers(loans: Iterable[LoanRecord], query: str) -> List[LoanRecord]:
    """Case-insensitive search over borrower name/phone, lender name and category."""
    if not query:
        return list(loans)
    needle = query.lower()
    return [
        loan for loan in loans
        if any(needle in (text or "").lower() for text in (
            loan.borrower_name, loan.borrower_phone, loan.lender_name,
            loan.category, loan.category_name,
        ))
    ]


@dataclass(frozen=True, slots=True)
class LedgerStats:
    total: int
    active: int
    overdue: int
    defaulted: int
    cleared: int
    total_borrowed: Decimal
    total_interest: Decimal
    total_penalty: Decimal
    total_repaid: Decimal
    outstanding: Decimal


def ledger_stats(loans: Iterable[LoanRecord]) -> LedgerStats:
    loans = list(loans)
    counts = Counter(loan.status for loan in loans)
    zero = Decimal("0")
    return LedgerStats(
        total=len(loans),
        active=counts[LoanStatus.ACTIVE],
        overdue=counts[LoanStatus.OVERDUE],
        defaulted=counts[LoanStatus.DEFAULTED],
        cleared=counts[LoanStatus.CLEARED],
        total_borrowed=sum((l.amount_borrowed for l in loans), zero),
        total_interest=sum((l.interest_amount for l in loans), zero),
        total_penalty=sum((l.penalty_amount for l in loans), zero),
        total_repaid=sum((l.amount_repaid for l in loans), zero),
        outstanding=sum((max(zero, l.balance) for l in loans if l.is_open), zero),
    )


# ============================================================================
# BLACKLIST
# ============================================================================

@dataclass(frozen=True, slots=True)
class BlacklistStats:
    total: int
    active: int
    pending_removal: int
    removed: int
    total_overdue: Decimal
    average_days_overdue: Decimal
    by_country: Dict[str, int]
    by_reason: Dict[str, int]


def blacklist_stats(entries: Iterable[BlacklistEntry]) -> BlacklistStats:
    """
    Summary of blacklist entries.

    Overdue totals and averages count only entries still in force.
    """
    entries = list(entries)
    counts = Counter(e.status for e in entries)
    in_force = [e for e in entries if e.is_in_force]
    total_overdue = sum((e.amount_overdue for e in in_force), Decimal("0"))
    average = Decimal("0")
    if in_force:
        average = Decimal(sum(e.days_overdue for e in in_force)) / Decimal(len(in_force))
    return BlacklistStats(
        total=len(entries),
        active=counts[BlacklistStatus.ACTIVE],
        pending_removal=counts[BlacklistStatus.PENDING_REMOVAL],
        removed=counts[BlacklistStatus.REMOVED],
        total_overdue=total_overdue,
        average_days_overdue=average,
        by_country=dict(Counter(e.country or "unknown" for e in in_force)),
        by_reason=dict(Counter(e.reason.value for e in in_force)),
    )


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class SubscriptionStats:
    total: int
    active: int
    expired: int
    cancelled: int
    suspended: int
    revenue_this_month: Decimal
    renewals_due: int
    by_tier: Dict[str, int]
    by_country: Dict[str, int]


def subscription_stats(
    subscriptions: Iterable[Subscription],
    transactions: Iterable[SubscriptionTransaction],
    now: datetime,
) -> SubscriptionStats:
    """
    Summary of subscriptions at `now`.

    Revenue counts completed transactions dated in now's calendar month.
    Renewals due are active subscriptions expiring within the next 7 days.
    """
    subscriptions = list(subscriptions)
    counts = Counter(s.status for s in subscriptions)
    active = [s for s in subscriptions if s.status is SubscriptionStatus.ACTIVE]
    horizon = now + timedelta(days=REMINDER_WINDOW_DAYS)
    revenue = sum(
        (tx.amount for tx in transactions
         if tx.status == "completed"
         and tx.date.year == now.year and tx.date.month == now.month),
        Decimal("0"),
    )
    return SubscriptionStats(
        total=len(subscriptions),
        active=counts[SubscriptionStatus.ACTIVE],
        expired=counts[SubscriptionStatus.EXPIRED],
        cancelled=counts[SubscriptionStatus.CANCELLED],
        suspended=counts[SubscriptionStatus.SUSPENDED],
        revenue_this_month=revenue,
        renewals_due=sum(1 for s in active if now <= s.expiry_date <= horizon),
        by_tier=dict(Counter(s.tier.value for s in active)),
        by_country=dict(Counter(s.country or "unknown" for s in active)),
    )


# ============================================================================
# PAGINATION
# ============================================================================

@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total_items // self.page_size))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def paginate(items: Sequence[T], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Page[T]:
    """
    Slice one 1-based page out of items.

    Pages past the end are empty rather than an error.
    """
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValidationError(f"page_size must be >= 1, got {page_size}")
    start = (page - 1) * page_size
    return Page(
        items=list(items[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_items=len(items),
    )
