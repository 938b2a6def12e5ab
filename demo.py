#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn M-Pesewa Step by Step

A pedagogical walk through one lending group's life on the platform. Each
step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation      - The empty platform, subscriptions, the calculator
  4-6:   Ledgers         - First loan, rejected loans, repayments and penalties
  7-8:   Blacklist       - Scheduled default scan, admin verification
  9-11:  Operations      - Expiry and renewal, collectors, dashboards and storage

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys
import tempfile

from mpesewa import (
    # Platform
    MPesewa, ActorContext, Role, LifecycleEngine, JsonFileStorage,
    # Calculator
    calculate, generate_repayment_schedule, quote_grid,
    # Dashboards
    ledger_stats, blacklist_stats, subscription_stats, paginate,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 3, 15, 9, 0, 0)
    country: str = "kenya"

    first_loan: Decimal = Decimal("1000")
    partial_repayment: Decimal = Decimal("400")
    days_late: int = 3


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

ADMIN = ActorContext("admin-1", Role.ADMIN, country=CONFIG.country, name="Platform Admin")
AMINA = ActorContext("lender-amina", Role.LENDER, country=CONFIG.country, name="Amina Wanjiru")
KOFI = ActorContext("borrower-kofi", Role.BORROWER, country=CONFIG.country, name="Kofi Otieno")


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_empty_platform(storage_dir: str) -> MPesewa:
    """Create an empty platform backed by JSON files."""
    step_header(1, "The Empty Platform",
        "A platform holds ledgers, the blacklist and subscriptions, plus a clock.")

    platform = MPesewa("nairobi-group", initial_time=CONFIG.start_time,
                       verbose=True, storage=JsonFileStorage(storage_dir))
    platform.set_current_country(CONFIG.country, ADMIN)

    print(f"  {platform!r}")
    print(f"  Storage directory: {storage_dir}")
    print(f"  Country: {platform.current_country}")
    return platform


def step_02_subscribe(platform: MPesewa) -> MPesewa:
    """A lender must hold an active subscription before lending."""
    step_header(2, "Subscribing",
        "Lenders buy a tier. Monthly plans expire on the 28th of the next month.")

    section_header("Before subscribing")
    result = platform.create_loan(AMINA, {'borrower_id': KOFI.user_id, 'amount_borrowed': 100})
    print(f"  create_loan ok={result.ok}: {result.error}")

    section_header("Buy basic monthly")
    sub = platform.create_subscription(AMINA, AMINA.user_id, "basic", "monthly", "mpesa").unwrap()
    print(f"  Tier:        {sub.tier.value} ({sub.definition.name})")
    print(f"  Paid:        {sub.amount}")
    print(f"  Weekly limit {sub.definition.weekly_limit}, open-loan cap {sub.definition.max_active_loans}")
    print(f"  Bought:      {sub.start_date}")
    print(f"  Expires:     {sub.expiry_date}")
    return platform


def step_03_calculator():
    """Preview loan costs without touching any ledger."""
    step_header(3, "The Loan Calculator",
        "10% interest for a full week, 5% of principal per day late. Pure functions.")

    quote = calculate(CONFIG.first_loan, 7)
    print(f"  Principal {quote.principal}: interest {quote.interest}, total {quote.total}, "
          f"daily {quote.daily:.2f}")

    section_header("Three-day schedule")
    for entry in generate_repayment_schedule(CONFIG.first_loan, 3, CONFIG.start_time):
        print(f"  Day {entry.day} {entry.date.date()}: pay {entry.amount_due:.2f}, "
              f"remaining {entry.remaining:.2f}")

    section_header("Preview grid (numpy)")
    grid = quote_grid([500, 1000, 1500], [1, 3, 7])
    for row, principal in enumerate([500, 1000, 1500]):
        totals = ", ".join(f"{t:8.2f}" for t in grid['total'][row])
        print(f"  {principal:5d}: {totals}")


# ============================================================================
# PHASE 2: LEDGERS (Steps 4-6)
# ============================================================================

def step_04_first_loan(platform: MPesewa) -> MPesewa:
    """Create the first ledger."""
    step_header(4, "Your First Loan",
        "Interest for the whole term is charged up front; the loan is due in 7 days.")

    record = platform.create_loan(AMINA, {
        'borrower_id': KOFI.user_id,
        'borrower_name': KOFI.name,
        'borrower_phone': "0712345678",
        'amount_borrowed': CONFIG.first_loan,
        'group_id': "group-mama-mboga",
        'category': "food",
    }).unwrap()

    print(f"\n  Ledger:    {record.id}")
    print(f"  Category:  {record.category_name}")
    print(f"  Principal: {record.amount_borrowed}")
    print(f"  Interest:  {record.interest_amount}")
    print(f"  Due:       {record.date_due}")
    print(f"  Status:    {record.status.value}")
    print(f"  Amina can still lend {platform.available_to_lend(AMINA.user_id)} this week")
    return platform


def step_05_rejections(platform: MPesewa) -> MPesewa:
    """Operations that break a rule fail as a whole and change nothing."""
    step_header(5, "Rejected Operations",
        "Failures come back as OperationResult(ok=False). State is untouched.")

    events_before = len(platform.event_log)
    attempts = [
        ("Over the weekly limit", lambda: platform.create_loan(
            AMINA, {'borrower_id': "borrower-2", 'amount_borrowed': 600})),
        ("Second loan in the same group", lambda: platform.create_loan(
            AMINA, {'borrower_id': KOFI.user_id, 'amount_borrowed': 50, 'group_id': "group-mama-mboga"})),
        ("Borrower recording a repayment", lambda: platform.record_repayment(
            KOFI, "ledger-000001", 100)),
    ]
    for label, attempt in attempts:
        result = attempt()
        print(f"  {label:32s} ok={result.ok}  {type(result.error).__name__}")

    print(f"\n  Events emitted by the failures: {len(platform.event_log) - events_before}")
    return platform


def step_06_repayments(platform: MPesewa) -> MPesewa:
    """Repay part, fall behind, watch the penalty grow."""
    step_header(6, "Repayments and Penalties",
        "Partial repayments reduce the balance; each late day adds 5% of principal.")

    platform.advance_time(CONFIG.start_time + timedelta(days=2))
    record = platform.record_repayment(AMINA, "ledger-000001", CONFIG.partial_repayment).unwrap()
    print(f"  After repaying {CONFIG.partial_repayment}: balance {record.balance}")

    platform.advance_time(record.date_due + timedelta(days=CONFIG.days_late))
    record = platform.recompute_ledger("ledger-000001").unwrap()
    print(f"  {CONFIG.days_late} days late: penalty {record.penalty_amount}, "
          f"balance {record.balance}, status {record.status.value}")
    return platform


# ============================================================================
# PHASE 3: BLACKLIST (Steps 7-8)
# ============================================================================

def step_07_default_scan(platform: MPesewa) -> MPesewa:
    """Let the lifecycle engine run until the loan defaults."""
    step_header(7, "The Default Scan",
        "A daily scan blacklists borrowers 60+ days overdue. Nobody has to report them.")

    engine = LifecycleEngine(platform)
    engine.start()

    platform.verbose = False
    record = platform.ledgers["ledger-000001"]
    day = platform.current_time
    while not platform.is_blacklisted(KOFI.user_id):
        day += timedelta(days=1)
        engine.step(day)
    platform.verbose = True

    entry_id = platform.blacklisted_users[KOFI.user_id].entry_id
    entry = platform.blacklist_entries[entry_id]
    print(f"  Blacklisted on {day.date()}, {entry.days_overdue} days after {record.date_due.date()}")
    print(f"  Entry {entry.id}: reason {entry.reason.value}, overdue amount {entry.amount_overdue}")
    print(f"  Blocks: {', '.join(b.value for b in entry.blocks)}")
    print(f"  Amina's access: {platform.lender_access(AMINA.user_id)}")
    return platform


def step_08_verification(platform: MPesewa) -> MPesewa:
    """An admin clears the borrower after payment outside the platform."""
    step_header(8, "Admin Verification",
        "Only an admin can remove an entry, behind an explicit confirmation.")

    entry_id = platform.blacklisted_users[KOFI.user_id].entry_id

    result = platform.remove_from_blacklist(AMINA, entry_id)
    print(f"  Lender tries to remove: ok={result.ok} ({type(result.error).__name__})")

    platform.request_blacklist_removal(KOFI, entry_id).unwrap()
    entry = platform.remove_from_blacklist(
        ADMIN, entry_id, confirm=lambda e: True, removal_reason="Paid in full at group meeting",
    ).unwrap()
    print(f"  Status {entry.status.value}, reviewed by {entry.reviewed_by_name}")
    print(f"  Still blacklisted: {platform.is_blacklisted(KOFI.user_id)}")
    return platform


# ============================================================================
# PHASE 4: OPERATIONS (Steps 9-11)
# ============================================================================

def step_09_renewal(platform: MPesewa) -> MPesewa:
    """Renew the lapsed subscription and upgrade it."""
    step_header(9, "Expiry, Renewal and Upgrade",
        "Lapsed lenders are blocked until they pay; upgrades credit unused days.")

    print(f"  Eligible before renewal: {platform.assert_lender_eligible(AMINA.user_id).ok}")
    sub = platform.renew_subscription(AMINA, "sub-000001").unwrap()
    print(f"  Renewed until {sub.expiry_date.date()}")

    sub = platform.upgrade_subscription(AMINA, "sub-000001", "premium").unwrap()
    change = sub.tier_history[-1]
    print(f"  {change.previous_tier.value} -> {change.new_tier.value}: "
          f"credit {change.credit_applied}, charged {change.charged}")
    print(f"  Weekly limit now {sub.definition.weekly_limit}")
    return platform


def step_10_collectors(platform: MPesewa) -> MPesewa:
    """Admins curate a directory of debt collectors."""
    step_header(10, "Debt Collectors",
        "A read-only directory for lenders; admins register, verify and report.")

    for name, specialization, city in [
        ("Jabali Recoveries", "legal", "Nairobi"),
        ("Pwani Collections", "microfinance", "Mombasa"),
    ]:
        collector = platform.register_collector(ADMIN, {
            'name': name, 'country': CONFIG.country, 'city': city, 'specialization': specialization,
        }).unwrap()
        platform.verify_collector(ADMIN, collector.id).unwrap()

    for collector in platform.list_collectors(country=CONFIG.country, verified_only=True):
        print(f"  {collector.name:20s} {collector.city:10s} {collector.specialization.value}")
    return platform


def step_11_dashboards(platform: MPesewa, storage_dir: str):
    """Summaries for the dashboards, and a reload from disk."""
    step_header(11, "Dashboards and Storage",
        "Statistics are pure functions over the collections; JSON files survive restarts.")

    stats = ledger_stats(platform.ledgers.values())
    print(f"  Ledgers: {stats.total} total, {stats.defaulted} defaulted, outstanding {stats.outstanding}")
    bl = blacklist_stats(platform.blacklist_entries.values())
    print(f"  Blacklist: {bl.active} active, {bl.removed} removed")
    subs = subscription_stats(platform.subscriptions.values(), platform.subscription_transactions,
                              platform.current_time)
    print(f"  Subscriptions: {subs.active} active, revenue this month {subs.revenue_this_month}")

    page = paginate(platform.event_log, page=1, page_size=5)
    print(f"\n  Audit log page 1 of {page.total_pages}:")
    for event in page.items:
        print(f"    {event!r}")

    section_header("Reload")
    reloaded = MPesewa("reloaded", initial_time=platform.current_time, verbose=False,
                       storage=JsonFileStorage(storage_dir)).load()
    print(f"  {reloaded!r}")
    print(f"  Same ledgers: {reloaded.ledgers == platform.ledgers}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       M-PESEWA - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print("""
    One lender, one borrower, one lending group, three months.

    PHASES:
      1-3:   Foundation  - Platform, subscriptions, calculator
      4-6:   Ledgers     - Loans, rejections, repayments
      7-8:   Blacklist   - Default scan, admin verification
      9-11:  Operations  - Renewal, collectors, dashboards
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    with tempfile.TemporaryDirectory(prefix="mpesewa-demo-") as storage_dir:
        platform = step_01_empty_platform(storage_dir)
        wait_for_enter()
        platform = step_02_subscribe(platform)
        wait_for_enter()
        step_03_calculator()
        wait_for_enter()

        platform = step_04_first_loan(platform)
        wait_for_enter()
        platform = step_05_rejections(platform)
        wait_for_enter()
        platform = step_06_repayments(platform)
        wait_for_enter()

        platform = step_07_default_scan(platform)
        wait_for_enter()
        platform = step_08_verification(platform)
        wait_for_enter()

        platform = step_09_renewal(platform)
        wait_for_enter()
        platform = step_10_collectors(platform)
        wait_for_enter()
        step_11_dashboards(platform, storage_dir)

    print("""
    Next steps:
      - See mpesewa/platform.py for every operation and its preconditions
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
