"""
mpesewa - Micro-Lending Platform Logic

Loan ledgers, automatic default blacklisting, lender subscriptions with
tier-based limits, and a debt-collector directory.

Usage:
    from datetime import datetime
    from mpesewa import MPesewa, ActorContext, Role, LifecycleEngine

    platform = MPesewa("kenya", initial_time=datetime(2025, 3, 15, 9, 0))
    lender = ActorContext("lender-1", Role.LENDER, country="kenya", name="Amina")
    platform.create_subscription(lender, "lender-1", "basic", "monthly", "mpesa")

    ledger = platform.create_loan(lender, {
        'borrower_id': 'borrower-1',
        'borrower_name': 'Kofi',
        'amount_borrowed': 1000,
        'group_id': 'group-7',
    }).unwrap()

    engine = LifecycleEngine(platform)
    engine.start()
    engine.step(datetime(2025, 5, 20, 9, 0))   # ledger is now blacklisted
"""

# Core types
from .core import (
    WEEKLY_INTEREST_RATE,
    DAILY_PENALTY_RATE,
    LOAN_TERM_DAYS,
    DEFAULT_THRESHOLD_DAYS,
    SUBSCRIPTION_ANCHOR_DAY,
    REMINDER_WINDOW_DAYS,
    EXPIRATION_CHECK_INTERVAL,
    DEFAULT_SCAN_INTERVAL,
    SYSTEM_ACTOR,
    Role,
    ActorContext,
    AuditEvent,
    FieldChange,
    OperationResult,
    MPesewaError,
    ValidationError,
    InvalidTierError,
    AuthorizationError,
    LenderNotEligible,
    BorrowerBlocked,
    NotFoundError,
    ConfirmationDeclined,
    round_money,
)

# Loan calculator
from .calculator import (
    LoanQuote,
    PenaltyQuote,
    ScheduleEntry,
    calculate,
    calculate_interest,
    calculate_penalty,
    generate_repayment_schedule,
    get_tier_limit,
    exceeds_tier_limit,
    quote_grid,
)

# Ledgers
from .loans import (
    LOAN_CATEGORIES,
    LoanStatus,
    LoanRecord,
    create_loan_record,
    recompute,
    apply_repayment,
    apply_updates,
    days_overdue,
    classify,
)

# Blacklist
from .blacklist import (
    BlacklistStatus,
    BlacklistReason,
    BlockType,
    BlacklistEntry,
    BlockedBorrower,
    VERIFIED_REMOVAL_REASON,
    find_defaulted_loans,
)

# Subscriptions
from .subscriptions import (
    Tier,
    Period,
    SubscriptionStatus,
    PaymentMethod,
    TransactionKind,
    TierDefinition,
    TIERS,
    TierChange,
    Subscription,
    SubscriptionTransaction,
    LenderAccess,
    ExpirationReport,
    anchor_expiry,
    extend_expiry,
    prorated_credit,
    upgrade_charge,
)

# Collectors
from .collectors import (
    CollectorKind,
    Specialization,
    VerificationStatus,
    ReportReason,
    Collector,
    CollectorReport,
    filter_collectors,
)

# Dashboards
from .dashboards import (
    LedgerStats,
    BlacklistStats,
    SubscriptionStats,
    Page,
    filter_ledgers_for_actor,
    search_ledgers,
    ledger_stats,
    blacklist_stats,
    subscription_stats,
    paginate,
)

# Storage
from .storage import KeyValueStorage, MemoryStorage, JsonFileStorage

# Platform
from .platform import MPesewa

# Scheduled events and lifecycle
from .scheduled_events import (
    Event,
    EventScheduler,
    EventHandler,
    expiration_check_event,
    default_scan_event,
    ledger_refresh_event,
)
from .event_handlers import (
    handle_expiration_check,
    handle_default_scan,
    handle_ledger_refresh,
    DEFAULT_HANDLERS,
    create_default_scheduler,
)
from .lifecycle_engine import LifecycleEngine


__all__ = [
    # Core
    'WEEKLY_INTEREST_RATE', 'DAILY_PENALTY_RATE', 'LOAN_TERM_DAYS',
    'DEFAULT_THRESHOLD_DAYS', 'SUBSCRIPTION_ANCHOR_DAY', 'REMINDER_WINDOW_DAYS',
    'EXPIRATION_CHECK_INTERVAL', 'DEFAULT_SCAN_INTERVAL', 'SYSTEM_ACTOR',
    'Role', 'ActorContext', 'AuditEvent', 'FieldChange', 'OperationResult',
    'MPesewaError', 'ValidationError', 'InvalidTierError', 'AuthorizationError',
    'LenderNotEligible', 'BorrowerBlocked', 'NotFoundError', 'ConfirmationDeclined',
    'round_money',
    # Calculator
    'LoanQuote', 'PenaltyQuote', 'ScheduleEntry', 'calculate', 'calculate_interest',
    'calculate_penalty', 'generate_repayment_schedule', 'get_tier_limit',
    'exceeds_tier_limit', 'quote_grid',
    # Ledgers
    'LOAN_CATEGORIES', 'LoanStatus', 'LoanRecord', 'create_loan_record', 'recompute',
    'apply_repayment', 'apply_updates', 'days_overdue', 'classify',
    # Blacklist
    'BlacklistStatus', 'BlacklistReason', 'BlockType', 'BlacklistEntry',
    'BlockedBorrower', 'VERIFIED_REMOVAL_REASON', 'find_defaulted_loans',
    # Subscriptions
    'Tier', 'Period', 'SubscriptionStatus', 'PaymentMethod', 'TransactionKind',
    'TierDefinition', 'TIERS', 'TierChange', 'Subscription', 'SubscriptionTransaction',
    'LenderAccess', 'ExpirationReport', 'anchor_expiry', 'extend_expiry',
    'prorated_credit', 'upgrade_charge',
    # Collectors
    'CollectorKind', 'Specialization', 'VerificationStatus', 'ReportReason',
    'Collector', 'CollectorReport', 'filter_collectors',
    # Dashboards
    'LedgerStats', 'BlacklistStats', 'SubscriptionStats', 'Page',
    'filter_ledgers_for_actor', 'search_ledgers', 'ledger_stats',
    'blacklist_stats', 'subscription_stats', 'paginate',
    # Storage
    'KeyValueStorage', 'MemoryStorage', 'JsonFileStorage',
    # Platform
    'MPesewa',
    # Scheduled Events
    'Event', 'EventScheduler', 'EventHandler',
    'expiration_check_event', 'default_scan_event', 'ledger_refresh_event',
    # Event Handlers
    'handle_expiration_check', 'handle_default_scan', 'handle_ledger_refresh',
    'DEFAULT_HANDLERS', 'create_default_scheduler',
    # Lifecycle
    'LifecycleEngine',
]

__version__ = '1.0.0'
