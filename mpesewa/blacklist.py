"""
blacklist.py - Borrower Blacklist Entries and Default Promotion

A borrower whose loan is 60 or more days past due is promoted onto the
blacklist. A blacklist entry blocks the borrower from new loans and new
groups until a platform admin verifies full payment out of band and removes
the entry.

=== ENTRY STATES ===

    active -> pending-removal      (removal requested)
    active | pending-removal -> removed   (admin only)

"removed" is reachable only through remove_entry(), which requires an admin
actor and records reviewed_by, reviewed_date and removal_reason.

=== LOOKUP TABLE ===

The platform keeps a borrower_id -> BlockedBorrower table alongside the
entries. A borrower present in the table has exactly one active or
pending-removal entry; promotion checks the table before inserting, so a
borrower never holds two.

=== DEDUPLICATION ===

An entry remembers the ledger and the due date that produced it. A ledger
already blacklisted for its current due date is never promoted again, even
after an admin removal, so clearing a borrower does not get undone by the
next scan.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core import (
    DEFAULT_THRESHOLD_DAYS, SYSTEM_ACTOR,
    ActorContext, ValidationError,
    require_admin, to_decimal, parse_datetime, format_datetime, format_decimal,
)
from .loans import LoanRecord, LoanStatus, days_overdue


SYSTEM_REPORTER_NAME = "System Auto-detection"
VERIFIED_REMOVAL_REASON = "Verified full payment and cleared by admin"


# =============================================================================
# ENUMS
# =============================================================================

class BlacklistStatus(str, Enum):
    """Status of a blacklist entry."""
    ACTIVE = "active"
    PENDING_REMOVAL = "pending-removal"
    REMOVED = "removed"


class BlockType(str, Enum):
    """Restriction applied to a blacklisted borrower."""
    NEW_LOANS = "new-loans"
    NEW_GROUPS = "new-groups"
    ROLE_SWITCH = "role-switch"


class BlacklistReason(str, Enum):
    """Why a borrower was blacklisted."""
    DEFAULT = "default"
    FRAUD = "fraud"
    MULTIPLE_DEFAULTS = "multiple-defaults"
    FALSE_INFORMATION = "false-information"
    NON_COOPERATION = "non-cooperation"


DEFAULT_BLOCKS: Tuple[BlockType, ...] = (BlockType.NEW_LOANS, BlockType.NEW_GROUPS)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True, slots=True)
class BlacklistEntry:
    """
    Immutable snapshot of one blacklist entry.

    Amounts are captured from the ledger when the entry is created and are
    not updated as the ledger keeps accruing.
    """
    id: str
    borrower_id: str
    lender_id: str
    loan_id: str
    ledger_id: str
    amount_borrowed: Decimal
    amount_due: Decimal
    amount_repaid: Decimal
    amount_overdue: Decimal
    date_borrowed: datetime
    date_due: datetime
    date_defaulted: Optional[datetime]
    days_overdue: int
    reason: BlacklistReason
    status: BlacklistStatus
    blocks: Tuple[BlockType, ...]
    reported_by: str
    reported_date: datetime
    created_at: datetime
    updated_at: datetime
    borrower_name: str = ""
    borrower_phone: str = ""
    lender_name: str = ""
    group_id: Optional[str] = None
    country: Optional[str] = None
    reason_details: str = ""
    reported_by_name: str = ""
    reviewed_by: Optional[str] = None
    reviewed_by_name: Optional[str] = None
    reviewed_date: Optional[datetime] = None
    removal_reason: Optional[str] = None
    removal_requested_by: Optional[str] = None
    removal_requested_date: Optional[datetime] = None

    def __post_init__(self):
        if not self.id or not self.borrower_id:
            raise ValueError("BlacklistEntry id and borrower_id cannot be empty")
        for name in ('amount_borrowed', 'amount_due', 'amount_repaid', 'amount_overdue'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        if not isinstance(self.reason, BlacklistReason):
            object.__setattr__(self, 'reason', BlacklistReason(self.reason))
        if not isinstance(self.status, BlacklistStatus):
            object.__setattr__(self, 'status', BlacklistStatus(self.status))
        object.__setattr__(self, 'blocks', tuple(BlockType(b) for b in self.blocks))
        if self.status is BlacklistStatus.REMOVED and not self.reviewed_by:
            raise ValueError("A removed BlacklistEntry must record reviewed_by")

    @property
    def is_in_force(self) -> bool:
        """True while the entry still restricts the borrower."""
        return self.status is not BlacklistStatus.REMOVED


@dataclass(frozen=True, slots=True)
class BlockedBorrower:
    """Row of the borrower lookup table."""
    entry_id: str
    date_blacklisted: datetime
    blocks: Tuple[BlockType, ...]


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def find_defaulted_loans(
    loans: Iterable[LoanRecord],
    lookup: Mapping[str, BlockedBorrower],
    entries: Iterable[BlacklistEntry],
    now: datetime,
) -> List[LoanRecord]:
    """
    Select the loans a default scan should promote.

    A loan qualifies when it is not cleared, is at least 60 days past due,
    its borrower is not in the lookup table, and it has not already produced
    an entry for its current due date. At most one loan per borrower is
    returned, the one due earliest.

    PURE FUNCTION - does not modify any input.
    """
    already = {(e.ledger_id, e.date_due) for e in entries}
    candidates = sorted(
        (loan for loan in loans
         if loan.status is not LoanStatus.CLEARED
         and days_overdue(loan.date_due, now) >= DEFAULT_THRESHOLD_DAYS
         and loan.borrower_id not in lookup
         and (loan.id, loan.date_due) not in already),
        key=lambda loan: (loan.date_due, loan.id),
    )

    selected = []
    seen_borrowers = set()
    for loan in candidates:
        if loan.borrower_id in seen_borrowers:
            continue
        seen_borrowers.add(loan.borrower_id)
        selected.append(loan)
    return selected


def _entry_from_loan(
    entry_id: str,
    loan: LoanRecord,
    reason: BlacklistReason,
    details: str,
    reported_by: str,
    reported_by_name: str,
    now: datetime,
) -> BlacklistEntry:
    overdue = days_overdue(loan.date_due, now)
    date_defaulted = None
    if overdue >= DEFAULT_THRESHOLD_DAYS:
        date_defaulted = loan.date_due + timedelta(days=DEFAULT_THRESHOLD_DAYS)
    return BlacklistEntry(
        id=entry_id,
        borrower_id=loan.borrower_id,
        borrower_name=loan.borrower_name,
        borrower_phone=loan.borrower_phone,
        lender_id=loan.lender_id,
        lender_name=loan.lender_name,
        group_id=loan.group_id,
        country=loan.country,
        loan_id=loan.id,
        ledger_id=loan.id,
        amount_borrowed=loan.amount_borrowed,
        amount_due=loan.total_due,
        amount_repaid=loan.amount_repaid,
        amount_overdue=max(Decimal("0"), loan.balance),
        date_borrowed=loan.date_borrowed,
        date_due=loan.date_due,
        date_defaulted=date_defaulted,
        days_overdue=overdue,
        reason=reason,
        reason_details=details,
        status=BlacklistStatus.ACTIVE,
        blocks=DEFAULT_BLOCKS,
        reported_by=reported_by,
        reported_by_name=reported_by_name,
        reported_date=now,
        created_at=now,
        updated_at=now,
    )


def build_default_entry(entry_id: str, loan: LoanRecord, now: datetime) -> BlacklistEntry:
    """
    Entry created by the automatic default scan.

    date_defaulted is date_due + 60 days regardless of when the scan runs.
    """
    overdue = days_overdue(loan.date_due, now)
    return _entry_from_loan(
        entry_id, loan,
        reason=BlacklistReason.DEFAULT,
        details=f"Automatic blacklisting after {overdue} days overdue",
        reported_by=SYSTEM_ACTOR,
        reported_by_name=SYSTEM_REPORTER_NAME,
        now=now,
    )


def build_manual_entry(
    entry_id: str,
    loan: LoanRecord,
    reason: Any,
    details: str,
    actor: ActorContext,
    now: datetime,
) -> BlacklistEntry:
    """
    Entry reported by the loan's lender or an admin.

    Raises:
        ValidationError: Unknown reason, or reason "default" on a loan that
            is not yet 60 days past due or is cleared
    """
    try:
        reason = BlacklistReason(reason)
    except ValueError:
        raise ValidationError(f"Unknown blacklist reason: {reason!r}")
    if reason is BlacklistReason.DEFAULT:
        if loan.status is LoanStatus.CLEARED or days_overdue(loan.date_due, now) < DEFAULT_THRESHOLD_DAYS:
            raise ValidationError(f"Ledger {loan.id} has not defaulted")
    return _entry_from_loan(
        entry_id, loan,
        reason=reason,
        details=details,
        reported_by=actor.user_id,
        reported_by_name=actor.name or actor.user_id,
        now=now,
    )


def blocked_borrower(entry: BlacklistEntry) -> BlockedBorrower:
    """Lookup-table row for an entry."""
    return BlockedBorrower(
        entry_id=entry.id,
        date_blacklisted=entry.reported_date,
        blocks=entry.blocks,
    )


def request_removal(entry: BlacklistEntry, actor: ActorContext, now: datetime) -> BlacklistEntry:
    """
    Move an active entry to pending-removal.

    Raises:
        ValidationError: Entry is not active
    """
    if entry.status is not BlacklistStatus.ACTIVE:
        raise ValidationError(f"Blacklist entry {entry.id} is {entry.status.value}, not active")
    return replace(
        entry,
        status=BlacklistStatus.PENDING_REMOVAL,
        removal_requested_by=actor.user_id,
        removal_requested_date=now,
        updated_at=now,
    )


def remove_entry(
    entry: BlacklistEntry,
    actor: ActorContext,
    reason: str,
    now: datetime,
) -> BlacklistEntry:
    """
    Mark an entry removed. The only path to "removed".

    Removing an entry that is already removed returns it unchanged.

    Raises:
        AuthorizationError: Actor is not an admin
    """
    require_admin(actor, "remove borrowers from the blacklist")
    if entry.status is BlacklistStatus.REMOVED:
        return entry
    return replace(
        entry,
        status=BlacklistStatus.REMOVED,
        reviewed_by=actor.user_id,
        reviewed_by_name=actor.name or "Platform Admin",
        reviewed_date=now,
        removal_reason=reason,
        updated_at=now,
    )


# =============================================================================
# SERIALIZATION
# =============================================================================

def to_dict(entry: BlacklistEntry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'borrowerId': entry.borrower_id,
        'borrowerName': entry.borrower_name,
        'borrowerPhone': entry.borrower_phone,
        'lenderId': entry.lender_id,
        'lenderName': entry.lender_name,
        'groupId': entry.group_id,
        'country': entry.country,
        'loanId': entry.loan_id,
        'ledgerId': entry.ledger_id,
        'amountBorrowed': format_decimal(entry.amount_borrowed),
        'amountDue': format_decimal(entry.amount_due),
        'amountRepaid': format_decimal(entry.amount_repaid),
        'amountOverdue': format_decimal(entry.amount_overdue),
        'dateBorrowed': format_datetime(entry.date_borrowed),
        'dateDue': format_datetime(entry.date_due),
        'dateDefaulted': format_datetime(entry.date_defaulted),
        'daysOverdue': entry.days_overdue,
        'reason': entry.reason.value,
        'reasonDetails': entry.reason_details,
        'status': entry.status.value,
        'blocks': [b.value for b in entry.blocks],
        'reportedBy': entry.reported_by,
        'reportedByName': entry.reported_by_name,
        'reportedDate': format_datetime(entry.reported_date),
        'reviewedBy': entry.reviewed_by,
        'reviewedByName': entry.reviewed_by_name,
        'reviewedDate': format_datetime(entry.reviewed_date),
        'removalReason': entry.removal_reason,
        'removalRequestedBy': entry.removal_requested_by,
        'removalRequestedDate': format_datetime(entry.removal_requested_date),
        'createdAt': format_datetime(entry.created_at),
        'updatedAt': format_datetime(entry.updated_at),
    }


def from_dict(raw: Mapping[str, Any]) -> BlacklistEntry:
    return BlacklistEntry(
        id=raw['id'],
        borrower_id=raw['borrowerId'],
        borrower_name=raw.get('borrowerName', ""),
        borrower_phone=raw.get('borrowerPhone', ""),
        lender_id=raw['lenderId'],
        lender_name=raw.get('lenderName', ""),
        group_id=raw.get('groupId'),
        country=raw.get('country'),
        loan_id=raw.get('loanId', raw['ledgerId']),
        ledger_id=raw['ledgerId'],
        amount_borrowed=to_decimal(raw['amountBorrowed']),
        amount_due=to_decimal(raw['amountDue']),
        amount_repaid=to_decimal(raw.get('amountRepaid', '0')),
        amount_overdue=to_decimal(raw.get('amountOverdue', '0')),
        date_borrowed=parse_datetime(raw['dateBorrowed']),
        date_due=parse_datetime(raw['dateDue']),
        date_defaulted=parse_datetime(raw.get('dateDefaulted')),
        days_overdue=int(raw.get('daysOverdue', 0)),
        reason=BlacklistReason(raw['reason']),
        reason_details=raw.get('reasonDetails', ""),
        status=BlacklistStatus(raw['status']),
        blocks=tuple(BlockType(b) for b in raw.get('blocks', [])),
        reported_by=raw['reportedBy'],
        reported_by_name=raw.get('reportedByName', ""),
        reported_date=parse_datetime(raw['reportedDate']),
        reviewed_by=raw.get('reviewedBy'),
        reviewed_by_name=raw.get('reviewedByName'),
        reviewed_date=parse_datetime(raw.get('reviewedDate')),
        removal_reason=raw.get('removalReason'),
        removal_requested_by=raw.get('removalRequestedBy'),
        removal_requested_date=parse_datetime(raw.get('removalRequestedDate')),
        created_at=parse_datetime(raw['createdAt']),
        updated_at=parse_datetime(raw['updatedAt']),
    )


def lookup_to_dict(lookup: Mapping[str, BlockedBorrower]) -> Dict[str, Any]:
    return {
        borrower_id: {
            'blacklisted': True,
            'entryId': row.entry_id,
            'dateBlacklisted': format_datetime(row.date_blacklisted),
            'blocks': [b.value for b in row.blocks],
        }
        for borrower_id, row in sorted(lookup.items())
    }


def lookup_from_dict(raw: Mapping[str, Any]) -> Dict[str, BlockedBorrower]:
    return {
        borrower_id: BlockedBorrower(
            entry_id=row['entryId'],
            date_blacklisted=parse_datetime(row['dateBlacklisted']),
            blocks=tuple(BlockType(b) for b in row.get('blocks', [])),
        )
        for borrower_id, row in raw.items()
        if row.get('blacklisted', True)
    }
