"""
subscriptions.py - Lender Subscriptions, Tier Table and Expiry Rules

A lender may only create loans while holding an active subscription. The
subscription tier sets the borrowing limits; the billing period sets the
price and the expiry date.

=== EXPIRY ANCHOR ===

Expiry is not a rolling N-day window. Every subscription falls due on the
28th of the terminal month of its period:

    monthly   -> 28th of the month after the start
    biAnnual  -> 28th of the sixth month after the start
    annual    -> 28th of December of the following year

Renewal always extends from the current expiry, never from now: renewing
early keeps unused time, and renewing late does not move the anchor forward.

=== UPGRADES ===

An upgrade changes tier and optionally period in place. Unused time on the
old plan is credited pro rata:

    credit = days_remaining / days_in_period * old_amount
    charge = max(0, new_price - credit)

Each upgrade is recorded as a TierChange on the subscription's history.

=== MODULE LAYOUT ===

This module holds the record types, the TIERS table and pure functions.
State changes (create, renew, upgrade, expiry scans, access blocking) are
performed by MPesewa in platform.py.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .core import (
    SUBSCRIPTION_ANCHOR_DAY, ONE_DAY,
    InvalidTierError, ValidationError,
    to_decimal, round_money, parse_datetime, format_datetime, format_decimal,
)


# =============================================================================
# ENUMS
# =============================================================================

class Tier(str, Enum):
    """Subscription tier."""
    BASIC = "basic"
    PREMIUM = "premium"
    SUPER = "super"
    LENDER_OF_LENDERS = "lender-of-lenders"


class Period(str, Enum):
    """Billing period."""
    MONTHLY = "monthly"
    BI_ANNUAL = "biAnnual"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    """Status of a subscription."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"     # Admin action, terminal until a new purchase
    PENDING = "pending"
    SUSPENDED = "suspended"     # Admin action


class PaymentMethod(str, Enum):
    """How a subscription was paid (payment itself is simulated)."""
    MPESA = "mpesa"
    BANK_TRANSFER = "bank-transfer"
    CARD = "card"


class TransactionKind(str, Enum):
    """What a subscription transaction paid for."""
    PURCHASE = "purchase"
    RENEWAL = "renewal"
    UPGRADE = "upgrade"


# =============================================================================
# TIER TABLE
# =============================================================================

@dataclass(frozen=True, slots=True)
class TierDefinition:
    """
    Limits and prices of one subscription tier.

    weekly_limit doubles as the per-loan ceiling. max_active_loans of None
    means unlimited.
    """
    name: str
    weekly_limit: Decimal
    monthly_limit: Decimal
    annual_limit: Decimal
    pricing: Mapping[Period, Decimal]
    crb_required: bool
    max_active_loans: Optional[int]

    def price(self, period: Period) -> Decimal:
        return self.pricing[period]


def _tier(name, weekly, monthly, annual, prices, crb, max_active) -> TierDefinition:
    monthly_price, bi_annual_price, annual_price = prices
    return TierDefinition(
        name=name,
        weekly_limit=Decimal(weekly),
        monthly_limit=Decimal(monthly),
        annual_limit=Decimal(annual),
        pricing=MappingProxyType({
            Period.MONTHLY: Decimal(monthly_price),
            Period.BI_ANNUAL: Decimal(bi_annual_price),
            Period.ANNUAL: Decimal(annual_price),
        }),
        crb_required=crb,
        max_active_loans=max_active,
    )


TIERS: Mapping[Tier, TierDefinition] = MappingProxyType({
    Tier.BASIC: _tier("Basic Tier", 1500, 6000, 78000, (50, 250, 500), False, 10),
    Tier.PREMIUM: _tier("Premium Tier", 5000, 20000, 260000, (250, 1500, 2500), False, 25),
    Tier.SUPER: _tier("Super Tier", 20000, 80000, 1040000, (1000, 5000, 8500), True, None),
    Tier.LENDER_OF_LENDERS: _tier(
        "Lender of Lenders", 50000, 200000, 2600000, (3500, 6500, 8500), True, None
    ),
})

# Days used to pro-rate upgrade credit.
PERIOD_DAYS: Mapping[Period, int] = MappingProxyType({
    Period.MONTHLY: 30,
    Period.BI_ANNUAL: 180,
    Period.ANNUAL: 365,
})


def resolve_tier(tier: Any) -> Tier:
    """Parse a tier name, raising InvalidTierError for unknown tiers."""
    try:
        return Tier(tier)
    except ValueError:
        raise InvalidTierError(f"Unknown subscription tier: {tier!r}")


def resolve_period(period: Any) -> Period:
    """Parse a billing period, raising ValidationError for unknown periods."""
    try:
        return Period(period)
    except ValueError:
        raise ValidationError(f"Unknown billing period: {period!r}")


def resolve_payment_method(method: Any) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method: {method!r}")


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True, slots=True)
class TierChange:
    """One upgrade, as recorded on the subscription."""
    previous_tier: Tier
    previous_period: Period
    new_tier: Tier
    new_period: Period
    credit_applied: Decimal
    charged: Decimal
    changed_at: datetime


@dataclass(frozen=True, slots=True)
class Subscription:
    """
    A lender's subscription.

    Each change produces a new instance. tier_history holds every upgrade in
    order, oldest first.
    """
    id: str
    lender_id: str
    lender_name: str
    tier: Tier
    period: Period
    amount: Decimal
    status: SubscriptionStatus
    start_date: datetime
    expiry_date: datetime
    last_payment_date: datetime
    next_payment_date: datetime
    auto_renew: bool
    payment_method: PaymentMethod
    transaction_id: str
    country: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_reminder_date: Optional[datetime] = None
    tier_history: Tuple[TierChange, ...] = ()

    def __post_init__(self):
        if not self.id or not self.lender_id:
            raise ValueError("Subscription id and lender_id cannot be empty")
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))
        if not isinstance(self.tier, Tier):
            object.__setattr__(self, 'tier', Tier(self.tier))
        if not isinstance(self.period, Period):
            object.__setattr__(self, 'period', Period(self.period))
        if not isinstance(self.status, SubscriptionStatus):
            object.__setattr__(self, 'status', SubscriptionStatus(self.status))
        if not isinstance(self.payment_method, PaymentMethod):
            object.__setattr__(self, 'payment_method', PaymentMethod(self.payment_method))
        if not isinstance(self.tier_history, tuple):
            object.__setattr__(self, 'tier_history', tuple(self.tier_history))

    @property
    def definition(self) -> TierDefinition:
        return TIERS[self.tier]

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expiry_date


@dataclass(frozen=True, slots=True)
class SubscriptionTransaction:
    """Payment record for a purchase, renewal or upgrade."""
    id: str
    subscription_id: str
    lender_id: str
    tier: Tier
    period: Period
    amount: Decimal
    payment_method: PaymentMethod
    status: str
    date: datetime
    reference: str
    kind: TransactionKind
    previous_tier: Optional[Tier] = None
    previous_period: Optional[Period] = None
    credit_applied: Decimal = Decimal("0")

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))
        if not isinstance(self.credit_applied, Decimal):
            object.__setattr__(self, 'credit_applied', to_decimal(self.credit_applied))


@dataclass(frozen=True, slots=True)
class LenderAccess:
    """Entry of the lender lookup table: whether the lender may create loans."""
    lender_id: str
    subscription_active: bool
    access_blocked: bool
    blocked_reason: Optional[str] = None
    blocked_date: Optional[datetime] = None


@dataclass(frozen=True)
class ExpirationReport:
    """Outcome of one expiration scan."""
    expired: Tuple[str, ...] = ()
    reminders: Tuple[str, ...] = ()
    auto_renew_due: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.expired or self.reminders or self.auto_renew_due)


# =============================================================================
# PURE EXPIRY FUNCTIONS
# =============================================================================

def _anchored(year: int, month: int, like: datetime) -> datetime:
    """The anchor day of a month, keeping the time of day of `like`."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return like.replace(year=year, month=month, day=SUBSCRIPTION_ANCHOR_DAY)


def anchor_expiry(start: datetime, period: Any) -> datetime:
    """
    Expiry date of a period starting at `start`.

    Example:
        anchor_expiry(datetime(2025, 3, 15), Period.MONTHLY)
        # datetime(2025, 4, 28)
        anchor_expiry(datetime(2025, 12, 3), Period.MONTHLY)
        # datetime(2026, 1, 28)
    """
    period = resolve_period(period)
    if period is Period.MONTHLY:
        return _anchored(start.year, start.month + 1, start)
    if period is Period.BI_ANNUAL:
        return _anchored(start.year, start.month + 6, start)
    return _anchored(start.year + 1, 12, start)


def extend_expiry(current_expiry: datetime, period: Any) -> datetime:
    """
    Expiry after one renewal: one period past the current expiry, re-anchored
    to the 28th.

    A renewal long after lapse can still land in the past; the lender stays
    ineligible until enough periods have been paid for.
    """
    return anchor_expiry(current_expiry, period)


def days_in_period(period: Any) -> int:
    """Nominal length of a billing period (30, 180 or 365 days)."""
    return PERIOD_DAYS[resolve_period(period)]


def days_remaining(expiry: datetime, now: datetime) -> int:
    """Whole days left until expiry, rounded up, never negative."""
    if expiry <= now:
        return 0
    return -((now - expiry) // ONE_DAY)


def prorated_credit(subscription: Subscription, now: datetime) -> Decimal:
    """
    Credit for the unused part of the current period.

    Capped at the amount paid, since days remaining can exceed the nominal
    period length right after a renewal.
    """
    remaining = Decimal(days_remaining(subscription.expiry_date, now))
    total = Decimal(days_in_period(subscription.period))
    credit = remaining / total * subscription.amount
    return round_money(min(credit, subscription.amount))


def next_payment_date(start: datetime, period: Any, now: datetime) -> datetime:
    """
    Next payment date shown to the lender.

    Monthly plans pay on the 28th of the month after `now`; longer plans
    pay on their anchored expiry counted from `start`.
    """
    period = resolve_period(period)
    if period is Period.MONTHLY:
        return _anchored(now.year, now.month + 1, now)
    return anchor_expiry(start, period)


def upgrade_charge(subscription: Subscription, new_tier: Tier, new_period: Period,
                   now: datetime) -> Tuple[Decimal, Decimal]:
    """Return (credit, charge) for moving a subscription to new_tier/new_period."""
    credit = prorated_credit(subscription, now)
    price = TIERS[new_tier].price(new_period)
    charge = max(Decimal("0"), price - credit)
    return credit, charge


def is_reminder_due(subscription: Subscription, now: datetime, window_days: int) -> bool:
    """
    True if an active subscription expires within the window and has not
    been reminded yet today.
    """
    if subscription.status is not SubscriptionStatus.ACTIVE:
        return False
    if subscription.expiry_date < now:
        return False
    if days_remaining(subscription.expiry_date, now) > window_days:
        return False
    last = subscription.last_reminder_date
    return last is None or last.date() != now.date()


# =============================================================================
# SERIALIZATION
# =============================================================================

def tier_change_to_dict(change: TierChange) -> Dict[str, Any]:
    return {
        'previousTier': change.previous_tier.value,
        'previousPeriod': change.previous_period.value,
        'newTier': change.new_tier.value,
        'newPeriod': change.new_period.value,
        'creditApplied': format_decimal(change.credit_applied),
        'charged': format_decimal(change.charged),
        'changedAt': format_datetime(change.changed_at),
    }


def tier_change_from_dict(raw: Dict[str, Any]) -> TierChange:
    return TierChange(
        previous_tier=Tier(raw['previousTier']),
        previous_period=Period(raw['previousPeriod']),
        new_tier=Tier(raw['newTier']),
        new_period=Period(raw['newPeriod']),
        credit_applied=to_decimal(raw['creditApplied']),
        charged=to_decimal(raw['charged']),
        changed_at=parse_datetime(raw['changedAt']),
    )


def subscription_to_dict(sub: Subscription) -> Dict[str, Any]:
    return {
        'id': sub.id,
        'lenderId': sub.lender_id,
        'lenderName': sub.lender_name,
        'tier': sub.tier.value,
        'period': sub.period.value,
        'amount': format_decimal(sub.amount),
        'status': sub.status.value,
        'startDate': format_datetime(sub.start_date),
        'expiryDate': format_datetime(sub.expiry_date),
        'lastPaymentDate': format_datetime(sub.last_payment_date),
        'nextPaymentDate': format_datetime(sub.next_payment_date),
        'autoRenew': sub.auto_renew,
        'paymentMethod': sub.payment_method.value,
        'transactionId': sub.transaction_id,
        'country': sub.country,
        'lastReminderDate': format_datetime(sub.last_reminder_date),
        'tierHistory': [tier_change_to_dict(c) for c in sub.tier_history],
        'createdAt': format_datetime(sub.created_at),
        'updatedAt': format_datetime(sub.updated_at),
    }


def subscription_from_dict(raw: Dict[str, Any]) -> Subscription:
    return Subscription(
        id=raw['id'],
        lender_id=raw['lenderId'],
        lender_name=raw.get('lenderName', ''),
        tier=Tier(raw['tier']),
        period=Period(raw['period']),
        amount=to_decimal(raw['amount']),
        status=SubscriptionStatus(raw['status']),
        start_date=parse_datetime(raw['startDate']),
        expiry_date=parse_datetime(raw['expiryDate']),
        last_payment_date=parse_datetime(raw['lastPaymentDate']),
        next_payment_date=parse_datetime(raw['nextPaymentDate']),
        auto_renew=bool(raw.get('autoRenew', False)),
        payment_method=PaymentMethod(raw['paymentMethod']),
        transaction_id=raw.get('transactionId', ''),
        country=raw.get('country'),
        last_reminder_date=parse_datetime(raw.get('lastReminderDate')),
        tier_history=tuple(tier_change_from_dict(c) for c in raw.get('tierHistory', [])),
        created_at=parse_datetime(raw['createdAt']),
        updated_at=parse_datetime(raw['updatedAt']),
    )


def transaction_to_dict(tx: SubscriptionTransaction) -> Dict[str, Any]:
    return {
        'id': tx.id,
        'subscriptionId': tx.subscription_id,
        'lenderId': tx.lender_id,
        'tier': tx.tier.value,
        'period': tx.period.value,
        'amount': format_decimal(tx.amount),
        'paymentMethod': tx.payment_method.value,
        'status': tx.status,
        'date': format_datetime(tx.date),
        'reference': tx.reference,
        'kind': tx.kind.value,
        'previousTier': tx.previous_tier.value if tx.previous_tier else None,
        'previousPeriod': tx.previous_period.value if tx.previous_period else None,
        'creditApplied': format_decimal(tx.credit_applied),
    }


def transaction_from_dict(raw: Dict[str, Any]) -> SubscriptionTransaction:
    return SubscriptionTransaction(
        id=raw['id'],
        subscription_id=raw['subscriptionId'],
        lender_id=raw['lenderId'],
        tier=Tier(raw['tier']),
        period=Period(raw['period']),
        amount=to_decimal(raw['amount']),
        payment_method=PaymentMethod(raw['paymentMethod']),
        status=raw.get('status', 'completed'),
        date=parse_datetime(raw['date']),
        reference=raw.get('reference', ''),
        kind=TransactionKind(raw.get('kind', TransactionKind.PURCHASE.value)),
        previous_tier=Tier(raw['previousTier']) if raw.get('previousTier') else None,
        previous_period=Period(raw['previousPeriod']) if raw.get('previousPeriod') else None,
        credit_applied=to_decimal(raw.get('creditApplied', '0')),
    )


def access_to_dict(access: LenderAccess) -> Dict[str, Any]:
    return {
        'subscriptionActive': access.subscription_active,
        'accessBlocked': access.access_blocked,
        'blockedReason': access.blocked_reason,
        'blockedDate': format_datetime(access.blocked_date),
    }


def access_from_dict(lender_id: str, raw: Dict[str, Any]) -> LenderAccess:
    return LenderAccess(
        lender_id=lender_id,
        subscription_active=bool(raw.get('subscriptionActive', False)),
        access_blocked=bool(raw.get('accessBlocked', False)),
        blocked_reason=raw.get('blockedReason'),
        blocked_date=parse_datetime(raw.get('blockedDate')),
    )
