"""
loans.py - Loan Ledger Records and the Ledger State Machine

A LoanRecord is one loan extended by a lender to a borrower inside a group.
It is created with the full 7-day interest already charged, accrues a daily
penalty once past its due date, and is cleared once the amount repaid
covers everything due.

=== STATE MACHINE ===

    active  -> overdue | cleared
    overdue -> defaulted | cleared
    cleared, defaulted: terminal in ordinary flow

Status is never stored independently of the facts. It is derived from
(amount_repaid vs total_due) and (now vs date_due):

    days_overdue = max(0, floor((now - date_due) / 1 day))

    repaid >= total_due     -> cleared   (overrides the date rules)
    days_overdue > 60       -> defaulted
    0 < days_overdue <= 60  -> overdue
    otherwise               -> active

Status is re-evaluated when a ledger is touched (repayment, update,
refresh), not continuously.

=== PENALTY CLOCK ===

Penalty is 5% of principal per whole day past due. For an open loan it is
measured at "now"; once a loan is cleared it is frozen at date_repaid, so
a cleared loan stays cleared on every later recompute.

=== PURE FUNCTIONS ===

    days_overdue(date_due, now) -> int
    classify(amount_repaid, total_due, overdue_days) -> LoanStatus
    derive_status(record, now) -> LoanStatus
    create_loan_record(loan_id, data, now) -> LoanRecord
    recompute(record, now) -> LoanRecord
    apply_repayment(record, amount, date, now) -> LoanRecord
    apply_updates(record, updates, now) -> LoanRecord
    rate_loan(record, rating, feedback, now) -> LoanRecord

Every function returns a new record; MPesewa (platform.py) stores it.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .core import (
    LOAN_TERM_DAYS, DEFAULT_THRESHOLD_DAYS,
    ValidationError,
    to_decimal, round_money, require_positive_amount, whole_days_between,
    parse_datetime, format_datetime, format_decimal,
)
from .calculator import calculate_interest, calculate_penalty


# =============================================================================
# CONSTANTS
# =============================================================================

LOAN_TERM = timedelta(days=LOAN_TERM_DAYS)

LOAN_CATEGORIES: Mapping[str, str] = MappingProxyType({
    'fare': 'M-pesewa Fare',
    'data': 'M-pesewa Data',
    'cooking-gas': 'M-pesewa Cooking Gas',
    'food': 'M-pesewa Food',
    'credo': 'M-pesewa Credo',
    'water-bill': 'M-pesewa Water Bill',
    'fuel': 'M-pesewa Fuel',
    'repair': 'M-pesewa Repair',
    'medicine': 'M-pesewa Medicine',
    'electricity': 'M-pesewa Electricity',
    'school-fees': 'M-pesewa School Fees',
    'tv-subscription': 'M-pesewa TV Subscription',
    'advance': 'M-pesewa Advance',
    'daily-sales': 'M-Pesa Daily Sales Advance',
    'working-capital': 'M-pesewa Working Capital',
})

# Fields a lender (or admin) may edit after creation. Amounts other than the
# principal, status and date_due are always derived.
EDITABLE_FIELDS = frozenset({
    'borrower_name', 'borrower_phone', 'lender_name', 'group_id',
    'category', 'notes', 'amount_borrowed', 'date_borrowed',
})

_RECOMPUTING_FIELDS = frozenset({'amount_borrowed', 'date_borrowed'})


# =============================================================================
# ENUMS
# =============================================================================

class LoanStatus(str, Enum):
    """Status of a loan ledger."""
    ACTIVE = "active"           # Within term, not fully repaid
    OVERDUE = "overdue"         # 1-60 days past due
    DEFAULTED = "defaulted"     # More than 60 days past due
    CLEARED = "cleared"         # Repaid in full


# =============================================================================
# RECORD
# =============================================================================

@dataclass(frozen=True, slots=True)
class LoanRecord:
    """
    Immutable snapshot of one loan ledger.

    All amounts are Decimal and non-negative. date_due is always
    date_borrowed + 7 days.
    """
    id: str
    borrower_id: str
    lender_id: str
    amount_borrowed: Decimal
    interest_amount: Decimal
    penalty_amount: Decimal
    amount_repaid: Decimal
    date_borrowed: datetime
    date_due: datetime
    status: LoanStatus
    created_at: datetime
    updated_at: datetime
    borrower_name: str = ""
    borrower_phone: str = ""
    lender_name: str = ""
    group_id: Optional[str] = None
    country: Optional[str] = None
    category: Optional[str] = None
    date_repaid: Optional[datetime] = None
    rating: Optional[int] = None
    notes: str = ""

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("LoanRecord id cannot be empty")
        if not self.borrower_id or not self.lender_id:
            raise ValueError("LoanRecord borrower_id and lender_id cannot be empty")
        for name in ('amount_borrowed', 'interest_amount', 'penalty_amount', 'amount_repaid'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                value = to_decimal(value)
                object.__setattr__(self, name, value)
            if value < 0:
                raise ValueError(f"LoanRecord {name} cannot be negative, got {value}")
        if not isinstance(self.status, LoanStatus):
            object.__setattr__(self, 'status', LoanStatus(self.status))

    @property
    def total_due(self) -> Decimal:
        return self.amount_borrowed + self.interest_amount + self.penalty_amount

    @property
    def balance(self) -> Decimal:
        return self.total_due - self.amount_repaid

    @property
    def is_open(self) -> bool:
        return self.status is not LoanStatus.CLEARED

    @property
    def category_name(self) -> str:
        if self.category is None:
            return ""
        return LOAN_CATEGORIES.get(self.category, self.category)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def days_overdue(date_due: datetime, now: datetime) -> int:
    """Whole days past due, floored, never negative."""
    return max(0, whole_days_between(date_due, now))


def classify(amount_repaid: Decimal, total_due: Decimal, overdue_days: int) -> LoanStatus:
    """
    Apply the ledger transition rule.

    Full repayment is checked last and overrides the date-based status.
    """
    if amount_repaid >= total_due:
        return LoanStatus.CLEARED
    if overdue_days > DEFAULT_THRESHOLD_DAYS:
        return LoanStatus.DEFAULTED
    if overdue_days > 0:
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


def derive_status(record: LoanRecord, now: datetime) -> LoanStatus:
    """Status of a record at `now`, given its stored amounts."""
    return classify(record.amount_repaid, record.total_due, days_overdue(record.date_due, now))


def term_interest(principal: Decimal) -> Decimal:
    """Interest for the full 7-day term, in minor units."""
    return round_money(calculate_interest(principal, LOAN_TERM_DAYS))


def accrued_penalty(principal: Decimal, date_due: datetime, as_of: datetime) -> Decimal:
    """Penalty accrued on the principal by `as_of`, in minor units."""
    return round_money(calculate_penalty(principal, days_overdue(date_due, as_of)).penalty)


def _validate_category(category: Optional[str]) -> Optional[str]:
    if category is not None and category not in LOAN_CATEGORIES:
        raise ValidationError(f"Unknown loan category: {category!r}")
    return category


def create_loan_record(loan_id: str, data: Mapping[str, Any], now: datetime) -> LoanRecord:
    """
    Build a new loan ledger.

    Interest for the full 7-day term is charged up front. Penalty and
    repaid start at zero.

    Args:
        loan_id: Identifier for the new ledger
        data: borrower_id, lender_id and amount_borrowed are required;
              borrower_name, borrower_phone, lender_name, group_id, country,
              category, notes and date_borrowed (default now) are optional
        now: Creation time

    Raises:
        ValidationError: Missing ids, non-positive principal, unknown
            category, or date_borrowed in the future
    """
    borrower_id = data.get('borrower_id')
    lender_id = data.get('lender_id')
    if not borrower_id or not lender_id:
        raise ValidationError("borrower_id and lender_id are required")

    principal = require_positive_amount(data.get('amount_borrowed'), "amount_borrowed")
    date_borrowed = parse_datetime(data.get('date_borrowed')) or now
    if date_borrowed > now:
        raise ValidationError(f"date_borrowed {date_borrowed} is in the future")

    record = LoanRecord(
        id=loan_id,
        borrower_id=borrower_id,
        lender_id=lender_id,
        amount_borrowed=principal,
        interest_amount=term_interest(principal),
        penalty_amount=Decimal("0"),
        amount_repaid=Decimal("0"),
        date_borrowed=date_borrowed,
        date_due=date_borrowed + LOAN_TERM,
        status=LoanStatus.ACTIVE,
        created_at=now,
        updated_at=now,
        borrower_name=data.get('borrower_name', ""),
        borrower_phone=data.get('borrower_phone', ""),
        lender_name=data.get('lender_name', ""),
        group_id=data.get('group_id'),
        country=data.get('country'),
        category=_validate_category(data.get('category')),
        notes=data.get('notes', ""),
    )
    # A back-dated loan may already be past due.
    return replace(record, **_derived_fields(record, now))


def _derived_fields(record: LoanRecord, now: datetime) -> Dict[str, Any]:
    interest = term_interest(record.amount_borrowed)

    if record.date_repaid is not None:
        penalty = accrued_penalty(record.amount_borrowed, record.date_due, record.date_repaid)
        if record.amount_repaid >= record.amount_borrowed + interest + penalty:
            return {
                'interest_amount': interest,
                'penalty_amount': penalty,
                'status': LoanStatus.CLEARED,
                'date_repaid': record.date_repaid,
            }

    penalty = accrued_penalty(record.amount_borrowed, record.date_due, now)
    status = classify(
        record.amount_repaid,
        record.amount_borrowed + interest + penalty,
        days_overdue(record.date_due, now),
    )
    return {
        'interest_amount': interest,
        'penalty_amount': penalty,
        'status': status,
        'date_repaid': now if status is LoanStatus.CLEARED else None,
    }


def recompute(record: LoanRecord, now: datetime) -> LoanRecord:
    """
    Recompute interest, penalty and status at `now`.

    PURE FUNCTION. Idempotent: recompute(recompute(r, t), t) == recompute(r, t).
    updated_at only moves when a derived field actually changes.
    """
    derived = _derived_fields(record, now)
    if all(getattr(record, k) == v for k, v in derived.items()):
        return record
    return replace(record, updated_at=now, **derived)


def apply_repayment(
    record: LoanRecord,
    amount: Any,
    date: Optional[datetime],
    now: datetime,
) -> LoanRecord:
    """
    Record a repayment.

    The penalty is brought up to date at the repayment date before the
    amount is applied. If the new total repaid reaches total due, the loan is
    cleared and date_repaid is set to the repayment date. Otherwise the
    record is recomputed at `now`.

    Raises:
        ValidationError: Non-positive amount, repayment on a cleared loan,
            or a repayment date outside [date_borrowed, now]
    """
    amount = require_positive_amount(amount, "repayment amount")
    date = date or now
    if record.status is LoanStatus.CLEARED:
        raise ValidationError(f"Ledger {record.id} is already cleared")
    if date > now:
        raise ValidationError(f"Repayment date {date} is in the future")
    if date < record.date_borrowed:
        raise ValidationError(f"Repayment date {date} is before the loan was taken")

    interest = term_interest(record.amount_borrowed)
    penalty = accrued_penalty(record.amount_borrowed, record.date_due, date)
    new_repaid = record.amount_repaid + amount

    if new_repaid >= record.amount_borrowed + interest + penalty:
        return replace(
            record,
            amount_repaid=new_repaid,
            interest_amount=interest,
            penalty_amount=penalty,
            date_repaid=date,
            status=LoanStatus.CLEARED,
            updated_at=now,
        )

    updated = replace(record, amount_repaid=new_repaid, updated_at=now)
    return replace(updated, **_derived_fields(updated, now))


def apply_updates(record: LoanRecord, updates: Mapping[str, Any], now: datetime) -> LoanRecord:
    """
    Merge editable fields into a record.

    Changing amount_borrowed or date_borrowed moves date_due and
    recomputes interest, penalty and status.

    Raises:
        ValidationError: A field outside EDITABLE_FIELDS, a non-positive
            principal, an unknown category, or a future date_borrowed
    """
    illegal = sorted(set(updates) - EDITABLE_FIELDS)
    if illegal:
        raise ValidationError(f"Fields cannot be updated: {', '.join(illegal)}")

    changes: Dict[str, Any] = dict(updates)
    if 'amount_borrowed' in changes:
        changes['amount_borrowed'] = require_positive_amount(
            changes['amount_borrowed'], "amount_borrowed"
        )
    if 'date_borrowed' in changes:
        date_borrowed = parse_datetime(changes['date_borrowed'])
        if date_borrowed is None or date_borrowed > now:
            raise ValidationError(f"Invalid date_borrowed: {changes['date_borrowed']!r}")
        changes['date_borrowed'] = date_borrowed
        changes['date_due'] = date_borrowed + LOAN_TERM
    if 'category' in changes:
        _validate_category(changes['category'])

    updated = replace(record, updated_at=now, **changes)
    if _RECOMPUTING_FIELDS & set(updates):
        updated = replace(updated, **_derived_fields(updated, now))
    return updated


def rate_loan(record: LoanRecord, rating: int, feedback: str, now: datetime) -> LoanRecord:
    """Set the lender's 1-5 rating of the borrower and append any feedback to notes."""
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError(f"Rating must be an integer from 1 to 5, got {rating!r}")
    notes = record.notes
    if feedback:
        notes = f"{notes}\nRating: {rating}/5 - {feedback}".strip()
    return replace(record, rating=rating, notes=notes, updated_at=now)


# =============================================================================
# SERIALIZATION
# =============================================================================

def to_dict(record: LoanRecord) -> Dict[str, Any]:
    """Storage form of a ledger (camelCase keys, Decimal as str, ISO dates)."""
    return {
        'id': record.id,
        'borrowerId': record.borrower_id,
        'borrowerName': record.borrower_name,
        'borrowerPhone': record.borrower_phone,
        'lenderId': record.lender_id,
        'lenderName': record.lender_name,
        'groupId': record.group_id,
        'country': record.country,
        'category': record.category,
        'amountBorrowed': format_decimal(record.amount_borrowed),
        'interestAmount': format_decimal(record.interest_amount),
        'penaltyAmount': format_decimal(record.penalty_amount),
        'amountRepaid': format_decimal(record.amount_repaid),
        'dateBorrowed': format_datetime(record.date_borrowed),
        'dateDue': format_datetime(record.date_due),
        'dateRepaid': format_datetime(record.date_repaid),
        'status': record.status.value,
        'rating': record.rating,
        'notes': record.notes,
        'createdAt': format_datetime(record.created_at),
        'updatedAt': format_datetime(record.updated_at),
    }


def from_dict(raw: Mapping[str, Any]) -> LoanRecord:
    """Inverse of to_dict()."""
    return LoanRecord(
        id=raw['id'],
        borrower_id=raw['borrowerId'],
        borrower_name=raw.get('borrowerName', ""),
        borrower_phone=raw.get('borrowerPhone', ""),
        lender_id=raw['lenderId'],
        lender_name=raw.get('lenderName', ""),
        group_id=raw.get('groupId'),
        country=raw.get('country'),
        category=raw.get('category'),
        amount_borrowed=to_decimal(raw['amountBorrowed']),
        interest_amount=to_decimal(raw.get('interestAmount', '0')),
        penalty_amount=to_decimal(raw.get('penaltyAmount', '0')),
        amount_repaid=to_decimal(raw.get('amountRepaid', '0')),
        date_borrowed=parse_datetime(raw['dateBorrowed']),
        date_due=parse_datetime(raw['dateDue']),
        date_repaid=parse_datetime(raw.get('dateRepaid')),
        status=LoanStatus(raw.get('status', LoanStatus.ACTIVE.value)),
        rating=raw.get('rating'),
        notes=raw.get('notes', ""),
        created_at=parse_datetime(raw['createdAt']),
        updated_at=parse_datetime(raw['updatedAt']),
    )
