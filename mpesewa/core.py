"""
Core types and pure helpers for the M-Pesewa lending core.

This module provides the foundational pieces shared by every other module:
1. Decimal context and money helpers (all currency math is Decimal)
2. Business constants (rates, terms, thresholds, anchor day)
3. Enums for roles
4. Exceptions: MPesewaError and the typed failure kinds
5. Immutable records: ActorContext, FieldChange, AuditEvent, OperationResult

All functions in this module are pure. Nothing here touches storage or the
platform clock.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Money is Decimal end to end. The global context is configured once at
# import so every module computes with the same precision and rounding.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_MPESEWA_DECIMAL_CONTEXT = getcontext()
_MPESEWA_DECIMAL_CONTEXT.prec = 50
_MPESEWA_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Loan terms. Interest is 10% per week, pro-rated by day.
WEEKLY_INTEREST_RATE = Decimal("0.10")
# Penalty is 5% of principal per day once the 7-day term has passed.
DAILY_PENALTY_RATE = Decimal("0.05")
LOAN_TERM_DAYS = 7
MIN_TERM_DAYS = 1

# A loan this many days past its due date is a default.
DEFAULT_THRESHOLD_DAYS = 60

# Subscriptions always fall due on this day of the month.
SUBSCRIPTION_ANCHOR_DAY = 28
# Subscriptions expiring within this window get a reminder.
REMINDER_WINDOW_DAYS = 7
# How often the expiration scan runs.
EXPIRATION_CHECK_INTERVAL = timedelta(hours=1)
# How often the default scan runs.
DEFAULT_SCAN_INTERVAL = timedelta(days=1)

# Minor-unit precision for stored amounts.
MONEY_DECIMAL_PLACES = 2
MONEY_QUANTUM = Decimal(10) ** -MONEY_DECIMAL_PLACES

ONE_DAY = timedelta(days=1)

# Reserved actor id for automatic transitions (default scan, expiry scan).
SYSTEM_ACTOR = "system"


# ============================================================================
# AUDIT EVENT KINDS
# ============================================================================

EVENT_LOAN_CREATED = "loan_created"
EVENT_REPAYMENT_RECORDED = "repayment_recorded"
EVENT_LOAN_RECOMPUTED = "loan_recomputed"
EVENT_LOAN_UPDATED = "loan_updated"
EVENT_LOAN_RATED = "loan_rated"
EVENT_BLACKLIST_CREATED = "blacklist_entry_created"
EVENT_BLACKLIST_REMOVAL_REQUESTED = "blacklist_removal_requested"
EVENT_BLACKLIST_REMOVED = "blacklist_entry_removed"
EVENT_SUBSCRIPTION_CREATED = "subscription_created"
EVENT_SUBSCRIPTION_RENEWED = "subscription_renewed"
EVENT_SUBSCRIPTION_UPGRADED = "subscription_upgraded"
EVENT_SUBSCRIPTION_CANCELLED = "subscription_cancelled"
EVENT_SUBSCRIPTION_SUSPENDED = "subscription_suspended"
EVENT_SUBSCRIPTION_EXPIRED = "subscription_expired"
EVENT_SUBSCRIPTION_REMINDER = "subscription_reminder"
EVENT_AUTO_RENEW_DUE = "auto_renew_due"
EVENT_AUTO_RENEW_CHANGED = "auto_renew_changed"
EVENT_LENDER_BLOCKED = "lender_access_blocked"
EVENT_LENDER_UNBLOCKED = "lender_access_unblocked"
EVENT_COUNTRY_CHANGED = "country_changed"
EVENT_COLLECTOR_REGISTERED = "collector_registered"
EVENT_COLLECTOR_REPORTED = "collector_reported"
EVENT_COLLECTOR_VERIFIED = "collector_verified"
EVENT_COLLECTOR_DELETED = "collector_deleted"


# ============================================================================
# ENUMS
# ============================================================================

class Role(str, Enum):
    """Role of the acting user."""
    ADMIN = "admin"
    LENDER = "lender"
    BORROWER = "borrower"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class MPesewaError(Exception):
    """Base exception for all lending-core errors."""
    pass


class ValidationError(MPesewaError):
    """Raised for malformed amounts or dates, unknown enum values, or exceeded limits."""
    pass


class InvalidTierError(ValidationError):
    """Raised when a subscription tier is not in the tier table."""
    pass


class AuthorizationError(MPesewaError):
    """Raised when the acting user may not perform the operation."""
    pass


class LenderNotEligible(AuthorizationError):
    """Raised when the subscription access gate rejects a lender."""
    pass


class BorrowerBlocked(AuthorizationError):
    """Raised when a blacklisted borrower is blocked from the requested action."""
    pass


class NotFoundError(MPesewaError):
    """Raised when operating on an unknown ledger, entry, subscription or collector id."""
    pass


class ConfirmationDeclined(MPesewaError):
    """Raised when the human confirmation for an admin action is declined."""
    pass


# ============================================================================
# MONEY AND TIME HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """
    Coerce a number to Decimal without binary float artifacts.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not
    Decimal("0.1000000000000000055511151231257827...").
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value))
        except ArithmeticError:
            raise ValidationError(f"Not a number: {value!r}")
    raise ValidationError(f"Expected a number, got {type(value).__name__}")


def round_money(value: Decimal) -> Decimal:
    """Quantize an amount to minor units with banker's rounding."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)


def require_positive_amount(value: Any, what: str = "amount") -> Decimal:
    """Coerce and validate a strictly positive, finite amount."""
    amount = to_decimal(value)
    if amount.is_nan() or amount.is_infinite():
        raise ValidationError(f"{what} must be finite, got {amount}")
    if amount <= 0:
        raise ValidationError(f"{what} must be positive, got {amount}")
    return amount


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, floored (negative when end < start)."""
    return (end - start) // ONE_DAY


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Accept a naive datetime, an ISO-8601 string or None.

    The platform clock is naive local time, so values carrying a UTC offset
    are rejected rather than compared against it.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Malformed date: {value!r}")
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise ValidationError(f"Expected a datetime, got {type(value).__name__}")
    if parsed.tzinfo is not None:
        raise ValidationError(f"Dates must not carry a timezone: {value!r}")
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


# ============================================================================
# ACTOR CONTEXT
# ============================================================================

@dataclass(frozen=True, slots=True)
class ActorContext:
    """
    The user on whose behalf an operation runs.

    Every mutating operation takes one explicitly instead of reading a
    global "current user".

    Attributes:
        user_id: Identifier of the acting user
        role: Role of the acting user
        country: Country the user is scoped to (None = unscoped)
        name: Display name recorded on reviews and reports
    """
    user_id: str
    role: Role
    country: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValueError("ActorContext user_id cannot be empty")
        if not isinstance(self.role, Role):
            object.__setattr__(self, 'role', Role(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def system(cls) -> 'ActorContext':
        """Actor used for automatic scans."""
        return cls(user_id=SYSTEM_ACTOR, role=Role.ADMIN, name="System Auto-detection")


def require_admin(actor: ActorContext, action: str) -> None:
    """Raise AuthorizationError unless the actor is an admin."""
    if not actor.is_admin:
        raise AuthorizationError(f"Only platform admins can {action}")


def require_self_or_admin(actor: ActorContext, user_id: str, action: str) -> None:
    """Raise AuthorizationError unless the actor is user_id or an admin."""
    if actor.is_admin:
        return
    if actor.user_id != user_id:
        raise AuthorizationError(
            f"{actor.user_id} cannot {action} on behalf of {user_id}"
        )


# ============================================================================
# AUDIT TRAIL
# ============================================================================

@dataclass(frozen=True, slots=True)
class FieldChange:
    """One field that changed in a state transition."""
    field: str
    old: Any
    new: Any


def diff_fields(old: Optional[Dict[str, Any]], new: Dict[str, Any]) -> Tuple[FieldChange, ...]:
    """
    Compute the fields that differ between two state dicts.

    Keys are visited in sorted order so the result is deterministic.
    """
    old = old or {}
    changes = []
    for key in sorted(set(old) | set(new)):
        old_val = old.get(key)
        new_val = new.get(key)
        if old_val != new_val:
            changes.append(FieldChange(key, old_val, new_val))
    return tuple(changes)


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """
    Immutable record of one state transition.

    Attributes:
        kind: Event kind (one of the EVENT_* constants)
        subject_id: Id of the ledger, entry, subscription or lender affected
        actor_id: Who caused the transition (SYSTEM_ACTOR for scans)
        timestamp: Platform time of the transition
        changes: Fields that changed, old and new values
        sequence_number: Monotonic position in the platform's event log
    """
    kind: str
    subject_id: str
    actor_id: str
    timestamp: datetime
    changes: Tuple[FieldChange, ...] = ()
    sequence_number: int = 0

    def changed(self, field_name: str) -> Optional[FieldChange]:
        """Return the change for a field, or None if it did not change."""
        for change in self.changes:
            if change.field == field_name:
                return change
        return None

    def __repr__(self) -> str:
        return f"AuditEvent(#{self.sequence_number} {self.kind} {self.subject_id} by {self.actor_id})"


# ============================================================================
# OPERATION RESULT
# ============================================================================

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of a public platform operation.

    Exactly one of value/error is meaningful: ok results carry the value
    (which may legitimately be None), failed results carry the error.
    """
    value: Optional[T] = None
    error: Optional[MPesewaError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, re-raising the error for failed results."""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: Optional[T] = None) -> 'OperationResult[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: MPesewaError) -> 'OperationResult[T]':
        return cls(error=error)

    def __repr__(self) -> str:
        if self.ok:
            return f"OperationResult(ok, {self.value!r})"
        return f"OperationResult(error={type(self.error).__name__}: {self.error})"
