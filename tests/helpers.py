"""
helpers.py - Record builders shared by the test suites

Builds ledgers and subscriptions directly through the pure functions,
without a platform, for tests that exercise one module in isolation.
"""

from datetime import datetime
from decimal import Decimal

from mpesewa import (
    LoanRecord, Subscription, Tier, Period, SubscriptionStatus, PaymentMethod,
    create_loan_record, anchor_expiry,
)


T0 = datetime(2025, 3, 15, 9, 0)


def make_record(
    amount="1000",
    date_borrowed: datetime = T0,
    now: datetime = None,
    loan_id: str = "ledger-000001",
    **extra,
) -> LoanRecord:
    """Build a ledger record directly, bypassing the platform."""
    data = {
        'borrower_id': extra.pop('borrower_id', "borrower-1"),
        'lender_id': extra.pop('lender_id', "lender-1"),
        'amount_borrowed': amount,
        'date_borrowed': date_borrowed,
        **extra,
    }
    return create_loan_record(loan_id, data, now or date_borrowed)


def make_subscription(now: datetime = T0, **overrides) -> Subscription:
    """Basic monthly subscription bought at `now`, with field overrides."""
    fields = dict(
        id="sub-000001",
        lender_id="lender-1",
        lender_name="Amina Lender",
        tier=Tier.BASIC,
        period=Period.MONTHLY,
        amount=Decimal("50"),
        status=SubscriptionStatus.ACTIVE,
        start_date=now,
        expiry_date=anchor_expiry(now, Period.MONTHLY),
        last_payment_date=now,
        next_payment_date=anchor_expiry(now, Period.MONTHLY),
        auto_renew=False,
        payment_method=PaymentMethod.MPESA,
        transaction_id="tx-000001",
        country="kenya",
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return Subscription(**fields)
