"""
platform.py - The M-Pesewa Lending Platform

MPesewa is the stateful owner of every collection: loan ledgers, blacklist
entries and the borrower lookup table, subscriptions and their payment
transactions, the lender access table and the collector directory. It is
the only class that mutates state.

Key responsibilities:
    - Runs every state change through the pure functions of loans.py,
      blacklist.py, subscriptions.py and collectors.py
    - Enforces who may do what (ActorContext) and the loan-creation gate
    - Owns the logical clock; "now" is never read from the wall clock
    - Records an AuditEvent for every state transition and notifies observers
    - Rewrites the affected collections to storage after every change
    - Converts domain errors into OperationResult at the public boundary
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, TypeVar
import re

from .core import (
    LOAN_TERM_DAYS, REMINDER_WINDOW_DAYS, SYSTEM_ACTOR,
    EVENT_LOAN_CREATED, EVENT_REPAYMENT_RECORDED, EVENT_LOAN_RECOMPUTED,
    EVENT_LOAN_UPDATED, EVENT_LOAN_RATED,
    EVENT_BLACKLIST_CREATED, EVENT_BLACKLIST_REMOVAL_REQUESTED, EVENT_BLACKLIST_REMOVED,
    EVENT_SUBSCRIPTION_CREATED, EVENT_SUBSCRIPTION_RENEWED, EVENT_SUBSCRIPTION_UPGRADED,
    EVENT_SUBSCRIPTION_CANCELLED, EVENT_SUBSCRIPTION_SUSPENDED, EVENT_SUBSCRIPTION_EXPIRED,
    EVENT_SUBSCRIPTION_REMINDER, EVENT_AUTO_RENEW_DUE, EVENT_AUTO_RENEW_CHANGED,
    EVENT_LENDER_BLOCKED, EVENT_LENDER_UNBLOCKED, EVENT_COUNTRY_CHANGED,
    EVENT_COLLECTOR_REGISTERED, EVENT_COLLECTOR_REPORTED, EVENT_COLLECTOR_VERIFIED,
    EVENT_COLLECTOR_DELETED,
    ActorContext, AuditEvent, OperationResult,
    MPesewaError, ValidationError, AuthorizationError, NotFoundError,
    LenderNotEligible, BorrowerBlocked, ConfirmationDeclined,
    diff_fields, require_admin, require_self_or_admin, require_positive_amount,
    parse_datetime,
)
from . import loans as loans_mod
from . import blacklist as blacklist_mod
from . import collectors as collectors_mod
from .loans import LoanRecord
from .blacklist import (
    BlacklistEntry, BlacklistStatus, BlockType, BlockedBorrower,
    VERIFIED_REMOVAL_REASON,
)
from .subscriptions import (
    TIERS, Subscription, SubscriptionStatus, SubscriptionTransaction, TransactionKind,
    TierChange, LenderAccess, ExpirationReport, PaymentMethod,
    resolve_tier, resolve_period, resolve_payment_method,
    anchor_expiry, extend_expiry, next_payment_date, upgrade_charge, is_reminder_due,
    subscription_to_dict, subscription_from_dict,
    transaction_to_dict, transaction_from_dict,
    access_to_dict, access_from_dict,
)
from .collectors import Collector, CollectorReport
from .dashboards import filter_ledgers_for_actor
from .storage import (
    KeyValueStorage, MemoryStorage,
    LEDGERS_KEY, BLACKLIST_KEY, BLACKLISTED_USERS_KEY, SUBSCRIPTIONS_KEY,
    SUBSCRIPTION_TRANSACTIONS_KEY, LENDERS_KEY, COLLECTORS_KEY, COLLECTOR_REPORTS_KEY,
)


T = TypeVar("T")

Observer = Callable[[AuditEvent], None]

BLOCKED_REASON_EXPIRED = "Subscription expired"
BLOCKED_REASON_CANCELLED = "Subscription cancelled"
BLOCKED_REASON_SUSPENDED = "Subscription suspended"

_TRAILING_NUMBER = re.compile(r"-(\d+)$")


class MPesewa:
    """
    The lending platform: ledgers, blacklist, subscriptions and collectors.

    Every public operation takes an explicit ActorContext (where an actor is
    involved) and returns an OperationResult. Read-only queries return plain
    values.

    Thread Safety:
        Not thread-safe. One platform instance per process.

    Example:
        platform = MPesewa("kenya", initial_time=datetime(2025, 3, 15), verbose=False)
        lender = ActorContext("lender-1", Role.LENDER, country="kenya")
        platform.create_subscription(lender, "lender-1", "basic", "monthly", "mpesa")
        result = platform.create_loan(lender, {
            'borrower_id': 'borrower-1', 'amount_borrowed': 1000, 'group_id': 'g-1',
        })
        ledger = result.unwrap()
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        storage: Optional[KeyValueStorage] = None,
    ):
        """
        Create a platform.

        Args:
            name: Platform identifier
            initial_time: Starting time of the logical clock (default: 1970-01-01)
            verbose: Print one line per state transition (default: True)
            storage: Collection storage (default: a fresh MemoryStorage)
        """
        self.name = name
        self.storage: KeyValueStorage = storage if storage is not None else MemoryStorage()
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.ledgers: Dict[str, LoanRecord] = {}
        self.blacklist_entries: Dict[str, BlacklistEntry] = {}
        self.blacklisted_users: Dict[str, BlockedBorrower] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.subscription_transactions: List[SubscriptionTransaction] = []
        self.lenders: Dict[str, LenderAccess] = {}
        self.collectors: Dict[str, Collector] = {}
        self.collector_reports: List[CollectorReport] = []

        self.current_country: Optional[str] = None
        self.event_log: List[AuditEvent] = []
        self._observers: List[Observer] = []
        # Monotonic counters: one for audit events, one per id prefix
        self._next_sequence: int = 0
        self._id_counters: Dict[str, int] = {}

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the platform."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # OBSERVERS AND AUDIT TRAIL
    # ========================================================================

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """
        Register an observer called synchronously with every AuditEvent.

        Returns a function that removes the observer.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)
        return unsubscribe

    def events_of(self, kind: str) -> List[AuditEvent]:
        return [e for e in self.event_log if e.kind == kind]

    def _emit(
        self,
        kind: str,
        subject_id: str,
        actor_id: str,
        old: Optional[Mapping[str, Any]] = None,
        new: Optional[Mapping[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            kind=kind,
            subject_id=subject_id,
            actor_id=actor_id,
            timestamp=self._current_time,
            changes=diff_fields(dict(old) if old else None, dict(new) if new else {}),
            sequence_number=self._next_sequence,
        )
        self._next_sequence += 1
        self.event_log.append(event)
        for observer in list(self._observers):
            observer(event)
        return event

    def _log(self, tag: str, message: str) -> None:
        if self.verbose:
            print(f"[{tag}] {message}")

    # ========================================================================
    # PUBLIC BOUNDARY
    # ========================================================================

    def _run(self, operation: Callable[..., T], *args, **kwargs) -> OperationResult[T]:
        """Run an operation, turning domain errors into a failed OperationResult."""
        counters = dict(self._id_counters)
        try:
            return OperationResult.success(operation(*args, **kwargs))
        except MPesewaError as e:
            # Ids drawn before the rejection are handed out again
            self._id_counters = counters
            self._log("REJECTED", f"{type(e).__name__}: {e}")
            return OperationResult.failure(e)

    def _generate_id(self, prefix: str) -> str:
        """
        Generate a unique record ID.

        Format: {prefix}-{sequence:06d}. Monotonic per prefix within a platform.
        """
        sequence = self._id_counters.get(prefix, 0) + 1
        self._id_counters[prefix] = sequence
        return f"{prefix}-{sequence:06d}"

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def _save_ledgers(self) -> None:
        self.storage.save(LEDGERS_KEY, [loans_mod.to_dict(r) for r in self.ledgers.values()])

    def _save_blacklist(self) -> None:
        self.storage.save(BLACKLIST_KEY, [blacklist_mod.to_dict(e) for e in self.blacklist_entries.values()])
        self.storage.save(BLACKLISTED_USERS_KEY, blacklist_mod.lookup_to_dict(self.blacklisted_users))

    def _save_subscriptions(self) -> None:
        self.storage.save(SUBSCRIPTIONS_KEY, [subscription_to_dict(s) for s in self.subscriptions.values()])
        self.storage.save(SUBSCRIPTION_TRANSACTIONS_KEY,
                          [transaction_to_dict(t) for t in self.subscription_transactions])
        self.storage.save(LENDERS_KEY, {k: access_to_dict(v) for k, v in sorted(self.lenders.items())})

    def _save_collectors(self) -> None:
        self.storage.save(COLLECTORS_KEY, [collectors_mod.to_dict(c) for c in self.collectors.values()])
        self.storage.save(COLLECTOR_REPORTS_KEY,
                          [collectors_mod.report_to_dict(r) for r in self.collector_reports])

    def save(self) -> None:
        """Write every collection to storage."""
        self._save_ledgers()
        self._save_blacklist()
        self._save_subscriptions()
        self._save_collectors()

    def load(self) -> 'MPesewa':
        """
        Replace in-memory collections with the contents of storage.

        Missing keys load as empty collections. The audit log is not
        persisted and is left untouched.
        """
        storage = self.storage
        self.ledgers = {
            r.id: r for r in (loans_mod.from_dict(raw) for raw in storage.load(LEDGERS_KEY) or [])
        }
        self.blacklist_entries = {
            e.id: e for e in (blacklist_mod.from_dict(raw) for raw in storage.load(BLACKLIST_KEY) or [])
        }
        self.blacklisted_users = blacklist_mod.lookup_from_dict(storage.load(BLACKLISTED_USERS_KEY) or {})
        self.subscriptions = {
            s.id: s for s in (subscription_from_dict(raw) for raw in storage.load(SUBSCRIPTIONS_KEY) or [])
        }
        self.subscription_transactions = [
            transaction_from_dict(raw) for raw in storage.load(SUBSCRIPTION_TRANSACTIONS_KEY) or []
        ]
        self.lenders = {
            lender_id: access_from_dict(lender_id, raw)
            for lender_id, raw in (storage.load(LENDERS_KEY) or {}).items()
        }
        self.collectors = {
            c.id: c for c in (collectors_mod.from_dict(raw) for raw in storage.load(COLLECTORS_KEY) or [])
        }
        self.collector_reports = [
            collectors_mod.report_from_dict(raw) for raw in storage.load(COLLECTOR_REPORTS_KEY) or []
        ]
        self._restore_id_counters()
        self._log("LOADED", f"{len(self.ledgers)} ledgers, {len(self.blacklist_entries)} blacklist entries, "
                            f"{len(self.subscriptions)} subscriptions, {len(self.collectors)} collectors")
        return self

    def _restore_id_counters(self) -> None:
        ids: Iterable[str] = [
            *self.ledgers, *self.blacklist_entries, *self.subscriptions, *self.collectors,
            *(t.id for t in self.subscription_transactions),
        ]
        for record_id in ids:
            match = _TRAILING_NUMBER.search(record_id)
            if not match:
                continue
            prefix = record_id[:match.start()]
            self._id_counters[prefix] = max(self._id_counters.get(prefix, 0), int(match.group(1)))

    # ========================================================================
    # SETTINGS
    # ========================================================================

    def set_current_country(self, country: Optional[str], actor: Optional[ActorContext] = None) -> None:
        """Record the display country. Currency and language formatting are not handled here."""
        old = self.current_country
        self.current_country = country
        if old != country:
            self._emit(
                EVENT_COUNTRY_CHANGED, country or "", actor.user_id if actor else SYSTEM_ACTOR,
                {'country': old}, {'country': country},
            )
            self._log("COUNTRY", f"{old} -> {country}")

    # ========================================================================
    # LOAN LEDGERS
    # ========================================================================

    def get_ledger(self, ledger_id: str) -> Optional[LoanRecord]:
        return self.ledgers.get(ledger_id)

    def _require_ledger(self, ledger_id: str) -> LoanRecord:
        record = self.ledgers.get(ledger_id)
        if record is None:
            raise NotFoundError(f"Unknown ledger: {ledger_id}")
        return record

    def list_ledgers(
        self,
        actor: ActorContext,
        group_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[LoanRecord]:
        """Ledgers visible to an actor, newest first."""
        visible = filter_ledgers_for_actor(self.ledgers.values(), actor, group_id, status)
        return sorted(visible, key=lambda r: (r.created_at, r.id), reverse=True)

    def lent_this_week(self, lender_id: str) -> Decimal:
        """Principal the lender extended in the trailing 7 days."""
        window_start = self._current_time - timedelta(days=LOAN_TERM_DAYS)
        return sum(
            (r.amount_borrowed for r in self.ledgers.values()
             if r.lender_id == lender_id and r.created_at > window_start),
            Decimal("0"),
        )

    def available_to_lend(self, lender_id: str) -> Decimal:
        """Remaining weekly capacity of a lender (0 when not eligible)."""
        subscription = self.active_subscription(lender_id)
        if subscription is None:
            return Decimal("0")
        return max(Decimal("0"), subscription.definition.weekly_limit - self.lent_this_week(lender_id))

    def _store_ledger(self, old: Optional[LoanRecord], new: LoanRecord, kind: str, actor_id: str) -> None:
        self.ledgers[new.id] = new
        self._save_ledgers()
        self._emit(kind, new.id, actor_id,
                   loans_mod.to_dict(old) if old else None, loans_mod.to_dict(new))

    def create_loan(self, actor: ActorContext, data: Mapping[str, Any]) -> OperationResult[LoanRecord]:
        """
        Create a loan ledger.

        Preconditions, checked in order:
            1. The lender passes the subscription access gate
            2. The borrower is not blocked from new loans
            3. The principal is positive and within the tier's per-loan ceiling
            4. The lender's trailing 7-day total stays within the weekly limit
            5. The lender is below the tier's open-loan cap
            6. The borrower has no other open loan in the same group

        Args:
            actor: The lender (or an admin acting for a lender)
            data: Loan fields; see loans.create_loan_record(). lender_id
                  defaults to the actor.
        """
        return self._run(self._create_loan, actor, data)

    def _create_loan(self, actor: ActorContext, data: Mapping[str, Any]) -> LoanRecord:
        now = self._current_time
        lender_id = data.get('lender_id') or actor.user_id
        require_self_or_admin(actor, lender_id, "create loans")

        subscription = self._assert_lender_eligible(lender_id)

        borrower_id = data.get('borrower_id')
        if not borrower_id:
            raise ValidationError("borrower_id is required")
        if BlockType.NEW_LOANS in self.borrower_blocks(borrower_id):
            raise BorrowerBlocked(f"Borrower {borrower_id} is blacklisted and cannot take new loans")

        definition = subscription.definition
        principal = require_positive_amount(data.get('amount_borrowed'), "amount_borrowed")
        if principal > definition.weekly_limit:
            raise ValidationError(
                f"{principal} exceeds the {definition.name} per-loan limit of {definition.weekly_limit}"
            )

        lent = self.lent_this_week(lender_id)
        if lent + principal > definition.weekly_limit:
            raise ValidationError(
                f"Weekly limit reached: {lent} lent this week, {definition.weekly_limit - lent} available"
            )

        open_loans = [r for r in self.ledgers.values() if r.lender_id == lender_id and r.is_open]
        if definition.max_active_loans is not None and len(open_loans) >= definition.max_active_loans:
            raise ValidationError(
                f"Lender {lender_id} already has {len(open_loans)} open loans "
                f"(limit {definition.max_active_loans})"
            )

        group_id = data.get('group_id')
        for record in self.ledgers.values():
            if record.borrower_id == borrower_id and record.group_id == group_id and record.is_open:
                raise ValidationError(
                    f"Borrower {borrower_id} already has open loan {record.id} in group {group_id}"
                )

        fields = dict(data)
        fields['lender_id'] = lender_id
        fields.setdefault('lender_name', subscription.lender_name or actor.name or "")
        fields.setdefault('country', actor.country or self.current_country)
        record = loans_mod.create_loan_record(self._generate_id("ledger"), fields, now)

        self._store_ledger(None, record, EVENT_LOAN_CREATED, actor.user_id)
        self._log("LOAN", f"{record.id}: {lender_id} -> {borrower_id} principal={record.amount_borrowed} "
                          f"interest={record.interest_amount} due={record.date_due.date()}")
        return record

    def record_repayment(
        self,
        actor: ActorContext,
        ledger_id: str,
        amount: Any,
        date: Optional[datetime] = None,
    ) -> OperationResult[LoanRecord]:
        """Record a repayment against a ledger (by its lender or an admin)."""
        return self._run(self._record_repayment, actor, ledger_id, amount, date)

    def _record_repayment(self, actor, ledger_id, amount, date) -> LoanRecord:
        old = self._require_ledger(ledger_id)
        require_self_or_admin(actor, old.lender_id, "record repayments")
        new = loans_mod.apply_repayment(old, amount, parse_datetime(date), self._current_time)
        self._store_ledger(old, new, EVENT_REPAYMENT_RECORDED, actor.user_id)
        self._log("REPAYMENT", f"{ledger_id}: +{new.amount_repaid - old.amount_repaid} "
                               f"repaid={new.amount_repaid} balance={new.balance} status={new.status.value}")
        return new

    def recompute_ledger(self, ledger_id: str) -> OperationResult[LoanRecord]:
        """Recompute interest, penalty and status of one ledger at the current time."""
        return self._run(self._recompute_ledger, ledger_id)

    def _recompute_ledger(self, ledger_id: str) -> LoanRecord:
        old = self._require_ledger(ledger_id)
        new = loans_mod.recompute(old, self._current_time)
        if new is not old:
            self._store_ledger(old, new, EVENT_LOAN_RECOMPUTED, SYSTEM_ACTOR)
            self._log("RECOMPUTE", f"{ledger_id}: penalty={new.penalty_amount} status={new.status.value}")
        return new

    def refresh_ledgers(self) -> OperationResult[List[LoanRecord]]:
        """Recompute every open ledger. Returns the ledgers that changed."""
        return self._run(self._refresh_ledgers)

    def _refresh_ledgers(self) -> List[LoanRecord]:
        now = self._current_time
        changed = []
        for old in list(self.ledgers.values()):
            if not old.is_open:
                continue
            new = loans_mod.recompute(old, now)
            if new is not old:
                self.ledgers[new.id] = new
                changed.append((old, new))
        if changed:
            self._save_ledgers()
            for old, new in changed:
                self._emit(EVENT_LOAN_RECOMPUTED, new.id, SYSTEM_ACTOR,
                           loans_mod.to_dict(old), loans_mod.to_dict(new))
            self._log("REFRESH", f"{len(changed)} ledgers recomputed")
        return [new for _, new in changed]

    def update_ledger(
        self,
        actor: ActorContext,
        ledger_id: str,
        updates: Mapping[str, Any],
    ) -> OperationResult[LoanRecord]:
        """Edit a ledger's editable fields (by its lender or an admin)."""
        return self._run(self._update_ledger, actor, ledger_id, updates)

    def _update_ledger(self, actor, ledger_id, updates) -> LoanRecord:
        old = self._require_ledger(ledger_id)
        require_self_or_admin(actor, old.lender_id, "edit ledgers")
        new = loans_mod.apply_updates(old, updates, self._current_time)
        self._store_ledger(old, new, EVENT_LOAN_UPDATED, actor.user_id)
        self._log("UPDATE", f"{ledger_id}: {', '.join(sorted(updates))}")
        return new

    def rate_ledger(
        self,
        actor: ActorContext,
        ledger_id: str,
        rating: int,
        feedback: str = "",
    ) -> OperationResult[LoanRecord]:
        """Rate the borrower of a ledger 1-5 (by its lender or an admin)."""
        return self._run(self._rate_ledger, actor, ledger_id, rating, feedback)

    def _rate_ledger(self, actor, ledger_id, rating, feedback) -> LoanRecord:
        old = self._require_ledger(ledger_id)
        require_self_or_admin(actor, old.lender_id, "rate borrowers")
        new = loans_mod.rate_loan(old, rating, feedback, self._current_time)
        self._store_ledger(old, new, EVENT_LOAN_RATED, actor.user_id)
        return new

    # ========================================================================
    # BLACKLIST
    # ========================================================================

    def is_blacklisted(self, borrower_id: str) -> bool:
        return borrower_id in self.blacklisted_users

    def borrower_blocks(self, borrower_id: str) -> FrozenSet[BlockType]:
        row = self.blacklisted_users.get(borrower_id)
        return frozenset(row.blocks) if row else frozenset()

    def get_blacklist_entry(self, entry_id: str) -> Optional[BlacklistEntry]:
        return self.blacklist_entries.get(entry_id)

    def _require_entry(self, entry_id: str) -> BlacklistEntry:
        entry = self.blacklist_entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Unknown blacklist entry: {entry_id}")
        return entry

    def list_blacklist(
        self,
        status: Optional[str] = None,
        country: Optional[str] = None,
    ) -> List[BlacklistEntry]:
        """Blacklist entries, newest first, optionally by status and country."""
        entries = [
            e for e in self.blacklist_entries.values()
            if (status is None or e.status.value == status)
            and (country is None or e.country == country)
        ]
        return sorted(entries, key=lambda e: (e.reported_date, e.id), reverse=True)

    def _insert_entry(self, entry: BlacklistEntry, actor_id: str) -> None:
        self.blacklist_entries[entry.id] = entry
        self.blacklisted_users[entry.borrower_id] = blacklist_mod.blocked_borrower(entry)
        self._emit(EVENT_BLACKLIST_CREATED, entry.id, actor_id, None, blacklist_mod.to_dict(entry))
        self._log("BLACKLIST", f"{entry.borrower_id} ({entry.reason.value}) via {entry.ledger_id}, "
                               f"{entry.days_overdue} days overdue")

    def scan_for_defaults(self) -> OperationResult[List[BlacklistEntry]]:
        """
        Promote every borrower with a loan 60+ days overdue onto the blacklist.

        Returns the entries created by this scan.
        """
        return self._run(self._scan_for_defaults)

    def _scan_for_defaults(self) -> List[BlacklistEntry]:
        now = self._current_time
        defaulted = blacklist_mod.find_defaulted_loans(
            self.ledgers.values(), self.blacklisted_users, self.blacklist_entries.values(), now,
        )
        created = []
        for loan in defaulted:
            entry = blacklist_mod.build_default_entry(self._generate_id("blacklist-auto"), loan, now)
            self._insert_entry(entry, SYSTEM_ACTOR)
            created.append(entry)
        if created:
            self._save_blacklist()
        return created

    def report_borrower(
        self,
        actor: ActorContext,
        ledger_id: str,
        reason: Any,
        details: str = "",
    ) -> OperationResult[BlacklistEntry]:
        """Blacklist a ledger's borrower manually (by the ledger's lender or an admin)."""
        return self._run(self._report_borrower, actor, ledger_id, reason, details)

    def _report_borrower(self, actor, ledger_id, reason, details) -> BlacklistEntry:
        loan = self._require_ledger(ledger_id)
        require_self_or_admin(actor, loan.lender_id, "blacklist borrowers")
        if self.is_blacklisted(loan.borrower_id):
            raise ValidationError(f"Borrower {loan.borrower_id} is already blacklisted")
        entry = blacklist_mod.build_manual_entry(
            self._generate_id("blacklist"), loan, reason, details, actor, self._current_time,
        )
        self._insert_entry(entry, actor.user_id)
        self._save_blacklist()
        return entry

    def request_blacklist_removal(
        self,
        actor: ActorContext,
        entry_id: str,
    ) -> OperationResult[BlacklistEntry]:
        """Ask for review of an active entry (by the borrower, the reporting lender or an admin)."""
        return self._run(self._request_blacklist_removal, actor, entry_id)

    def _request_blacklist_removal(self, actor, entry_id) -> BlacklistEntry:
        old = self._require_entry(entry_id)
        if not actor.is_admin and actor.user_id not in (old.borrower_id, old.lender_id, old.reported_by):
            raise AuthorizationError(f"{actor.user_id} cannot request removal of {entry_id}")
        new = blacklist_mod.request_removal(old, actor, self._current_time)
        self.blacklist_entries[new.id] = new
        self._save_blacklist()
        self._emit(EVENT_BLACKLIST_REMOVAL_REQUESTED, new.id, actor.user_id,
                   blacklist_mod.to_dict(old), blacklist_mod.to_dict(new))
        self._log("BLACKLIST", f"{entry_id}: removal requested by {actor.user_id}")
        return new

    def verify_blacklist_entry(
        self,
        actor: ActorContext,
        entry_id: str,
    ) -> OperationResult[BlacklistEntry]:
        """
        Admin confirms full payment out of band and removes the entry.

        Verifying an already removed entry succeeds without changes.
        """
        return self._run(self._remove_entry, actor, entry_id, VERIFIED_REMOVAL_REASON, None)

    def remove_from_blacklist(
        self,
        actor: ActorContext,
        entry_id: str,
        confirm: Optional[Callable[[BlacklistEntry], bool]] = None,
        removal_reason: str = VERIFIED_REMOVAL_REASON,
    ) -> OperationResult[BlacklistEntry]:
        """
        Admin removal behind a human confirmation.

        Args:
            actor: Must be an admin
            entry_id: Entry to remove
            confirm: Called with the entry; a False answer aborts with
                ConfirmationDeclined. None skips the prompt.
            removal_reason: Recorded on the entry
        """
        return self._run(self._remove_entry, actor, entry_id, removal_reason, confirm)

    def _remove_entry(self, actor, entry_id, removal_reason, confirm) -> BlacklistEntry:
        require_admin(actor, "remove borrowers from the blacklist")
        old = self._require_entry(entry_id)
        if old.status is BlacklistStatus.REMOVED:
            return old
        if confirm is not None and not confirm(old):
            raise ConfirmationDeclined(f"Removal of {entry_id} was not confirmed")

        new = blacklist_mod.remove_entry(old, actor, removal_reason, self._current_time)
        self.blacklist_entries[new.id] = new
        row = self.blacklisted_users.get(new.borrower_id)
        if row is not None and row.entry_id == new.id:
            del self.blacklisted_users[new.borrower_id]
        self._save_blacklist()
        self._emit(EVENT_BLACKLIST_REMOVED, new.id, actor.user_id,
                   blacklist_mod.to_dict(old), blacklist_mod.to_dict(new))
        self._log("BLACKLIST", f"{entry_id}: {new.borrower_id} removed by {actor.user_id}")
        return new

    # ========================================================================
    # SUBSCRIPTIONS AND THE ACCESS GATE
    # ========================================================================

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def _require_subscription(self, subscription_id: str) -> Subscription:
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            raise NotFoundError(f"Unknown subscription: {subscription_id}")
        return sub

    def active_subscription(self, lender_id: str) -> Optional[Subscription]:
        """The lender's active, unexpired subscription, if any."""
        now = self._current_time
        for sub in self.subscriptions.values():
            if (sub.lender_id == lender_id
                    and sub.status is SubscriptionStatus.ACTIVE
                    and not sub.is_expired_at(now)):
                return sub
        return None

    def lender_access(self, lender_id: str) -> Optional[LenderAccess]:
        return self.lenders.get(lender_id)

    def _assert_lender_eligible(self, lender_id: str) -> Subscription:
        access = self.lenders.get(lender_id)
        if access is not None and access.access_blocked:
            raise LenderNotEligible(
                f"Lender {lender_id} is blocked: {access.blocked_reason or 'access blocked'}"
            )
        subscription = self.active_subscription(lender_id)
        if subscription is None:
            raise LenderNotEligible(f"Lender {lender_id} has no active subscription")
        return subscription

    def assert_lender_eligible(self, lender_id: str) -> OperationResult[Subscription]:
        """
        The loan-creation access gate.

        Succeeds with the lender's subscription when the lender is not blocked
        and holds an active subscription that has not passed its expiry,
        even if the hourly expiration scan has not run yet.
        """
        return self._run(self._assert_lender_eligible, lender_id)

    def _set_lender_access(self, lender_id: str, blocked: bool, reason: Optional[str]) -> LenderAccess:
        old = self.lenders.get(lender_id)
        if blocked:
            new = LenderAccess(
                lender_id=lender_id,
                subscription_active=False,
                access_blocked=True,
                blocked_reason=reason,
                blocked_date=self._current_time,
            )
        else:
            new = LenderAccess(lender_id=lender_id, subscription_active=True, access_blocked=False)
        if old == new or (old is not None and blocked and old.access_blocked):
            return old
        self.lenders[lender_id] = new
        kind = EVENT_LENDER_BLOCKED if blocked else EVENT_LENDER_UNBLOCKED
        self._emit(kind, lender_id, SYSTEM_ACTOR,
                   access_to_dict(old) if old else None, access_to_dict(new))
        self._log("ACCESS", f"{lender_id} {'blocked: ' + reason if blocked else 'unblocked'}")
        return new

    def block_lender_access(self, lender_id: str, reason: str) -> OperationResult[LenderAccess]:
        """Block a lender from creating loans."""
        def block() -> LenderAccess:
            access = self._set_lender_access(lender_id, True, reason)
            self._save_subscriptions()
            return access
        return self._run(block)

    def unblock_lender_access(self, lender_id: str) -> OperationResult[LenderAccess]:
        """Restore a lender's access."""
        def unblock() -> LenderAccess:
            access = self._set_lender_access(lender_id, False, None)
            self._save_subscriptions()
            return access
        return self._run(unblock)

    def _lender_has_other_active(self, lender_id: str, subscription_id: str) -> bool:
        sub = self.active_subscription(lender_id)
        return sub is not None and sub.id != subscription_id

    def _require_not_held_by_admin(self, actor: ActorContext, lender_id: str) -> None:
        """Only lapsed lenders may pay their way back in; other blocks need an admin."""
        access = self.lenders.get(lender_id)
        if (access is not None and access.access_blocked and not actor.is_admin
                and access.blocked_reason != BLOCKED_REASON_EXPIRED):
            raise AuthorizationError(
                f"Lender {lender_id} is blocked ({access.blocked_reason}); an admin must restore access"
            )

    def _record_transaction(
        self,
        sub: Subscription,
        kind: TransactionKind,
        amount: Decimal,
        payment_method: PaymentMethod,
        previous: Optional[Subscription] = None,
        credit: Decimal = Decimal("0"),
    ) -> SubscriptionTransaction:
        tx_id = self._generate_id("tx")
        tx = SubscriptionTransaction(
            id=tx_id,
            subscription_id=sub.id,
            lender_id=sub.lender_id,
            tier=sub.tier,
            period=sub.period,
            amount=amount,
            payment_method=payment_method,
            status="completed",
            date=self._current_time,
            reference=f"MP{tx_id.split('-')[-1]}",
            kind=kind,
            previous_tier=previous.tier if previous else None,
            previous_period=previous.period if previous else None,
            credit_applied=credit,
        )
        self.subscription_transactions.append(tx)
        return tx

    def _store_subscription(self, old: Optional[Subscription], new: Subscription, kind: str, actor_id: str) -> None:
        self.subscriptions[new.id] = new
        self._emit(kind, new.id, actor_id,
                   subscription_to_dict(old) if old else None, subscription_to_dict(new))

    def create_subscription(
        self,
        actor: ActorContext,
        lender_id: str,
        tier: Any,
        period: Any,
        payment_method: Any = PaymentMethod.MPESA,
        auto_renew: bool = False,
    ) -> OperationResult[Subscription]:
        """
        Purchase a subscription. Payment is simulated and always completes.

        Fails with InvalidTierError for an unknown tier and ValidationError
        when the lender already holds an active subscription (renew or
        upgrade it instead). A lender blocked for any reason other than
        expiry (cancellation, suspension, manual review) cannot buy a new
        subscription; only an admin can purchase on their behalf.
        """
        return self._run(self._create_subscription, actor, lender_id, tier, period,
                         payment_method, auto_renew)

    def _create_subscription(self, actor, lender_id, tier, period, payment_method, auto_renew) -> Subscription:
        require_self_or_admin(actor, lender_id, "purchase subscriptions")
        self._require_not_held_by_admin(actor, lender_id)
        tier = resolve_tier(tier)
        period = resolve_period(period)
        method = resolve_payment_method(payment_method)
        existing = self.active_subscription(lender_id)
        if existing is not None:
            raise ValidationError(f"Lender {lender_id} already has active subscription {existing.id}")

        now = self._current_time
        sub_id = self._generate_id("sub")
        sub = Subscription(
            id=sub_id,
            lender_id=lender_id,
            lender_name=(actor.name or "") if actor.user_id == lender_id else "",
            tier=tier,
            period=period,
            amount=TIERS[tier].price(period),
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            expiry_date=anchor_expiry(now, period),
            last_payment_date=now,
            next_payment_date=next_payment_date(now, period, now),
            auto_renew=bool(auto_renew),
            payment_method=method,
            transaction_id="",
            country=actor.country or self.current_country,
            created_at=now,
            updated_at=now,
        )
        tx = self._record_transaction(sub, TransactionKind.PURCHASE, sub.amount, method)
        sub = replace(sub, transaction_id=tx.id)

        self._store_subscription(None, sub, EVENT_SUBSCRIPTION_CREATED, actor.user_id)
        self._set_lender_access(lender_id, False, None)
        self._save_subscriptions()
        self._log("SUBSCRIPTION", f"{sub.id}: {lender_id} {tier.value}/{period.value} "
                                  f"paid {sub.amount}, expires {sub.expiry_date.date()}")
        return sub

    def renew_subscription(
        self,
        actor: ActorContext,
        subscription_id: str,
        payment_method: Any = None,
    ) -> OperationResult[Subscription]:
        """
        Pay for one more period.

        The new expiry is one period after the current expiry, anchored to
        the 28th, even when the subscription has already lapsed.
        """
        return self._run(self._renew_subscription, actor, subscription_id, payment_method)

    def _renew_subscription(self, actor, subscription_id, payment_method) -> Subscription:
        old = self._require_subscription(subscription_id)
        require_self_or_admin(actor, old.lender_id, "renew subscriptions")
        if old.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.SUSPENDED):
            raise ValidationError(f"Subscription {subscription_id} is {old.status.value} and cannot be renewed")
        self._require_not_held_by_admin(actor, old.lender_id)
        if old.status is not SubscriptionStatus.ACTIVE and self._lender_has_other_active(old.lender_id, old.id):
            raise ValidationError(f"Lender {old.lender_id} already has another active subscription")
        method = resolve_payment_method(payment_method) if payment_method is not None else old.payment_method

        now = self._current_time
        expiry = extend_expiry(old.expiry_date, old.period)
        # Still lapsed after paying one period: stays expired and blocked
        covered = expiry >= now
        new = replace(
            old,
            status=SubscriptionStatus.ACTIVE if covered else old.status,
            expiry_date=expiry,
            last_payment_date=now,
            next_payment_date=next_payment_date(now, old.period, now),
            payment_method=method,
            updated_at=now,
        )
        tx = self._record_transaction(new, TransactionKind.RENEWAL, new.amount, method)
        new = replace(new, transaction_id=tx.id)

        self._store_subscription(old, new, EVENT_SUBSCRIPTION_RENEWED, actor.user_id)
        if covered:
            self._set_lender_access(new.lender_id, False, None)
        self._save_subscriptions()
        self._log("SUBSCRIPTION", f"{new.id}: renewed until {new.expiry_date.date()}")
        return new

    def upgrade_subscription(
        self,
        actor: ActorContext,
        subscription_id: str,
        new_tier: Any,
        new_period: Any = None,
    ) -> OperationResult[Subscription]:
        """
        Change tier (and optionally period) in place with a prorated credit.

        charge = max(0, new_price - days_remaining / days_in_period * old_amount).
        A period change re-anchors the expiry from now.
        """
        return self._run(self._upgrade_subscription, actor, subscription_id, new_tier, new_period)

    def _upgrade_subscription(self, actor, subscription_id, new_tier, new_period) -> Subscription:
        old = self._require_subscription(subscription_id)
        require_self_or_admin(actor, old.lender_id, "change subscriptions")
        tier = resolve_tier(new_tier)
        period = resolve_period(new_period) if new_period is not None else old.period
        now = self._current_time
        if old.status is not SubscriptionStatus.ACTIVE or old.is_expired_at(now):
            raise ValidationError(f"Subscription {subscription_id} is not active")
        if tier is old.tier and period is old.period:
            raise ValidationError(f"Subscription {subscription_id} is already {tier.value}/{period.value}")

        credit, charge = upgrade_charge(old, tier, period, now)
        change = TierChange(
            previous_tier=old.tier,
            previous_period=old.period,
            new_tier=tier,
            new_period=period,
            credit_applied=credit,
            charged=charge,
            changed_at=now,
        )
        expiry = old.expiry_date if period is old.period else anchor_expiry(now, period)
        new = replace(
            old,
            tier=tier,
            period=period,
            amount=TIERS[tier].price(period),
            expiry_date=expiry,
            next_payment_date=expiry if period is not old.period else old.next_payment_date,
            last_payment_date=now,
            tier_history=old.tier_history + (change,),
            updated_at=now,
        )
        tx = self._record_transaction(new, TransactionKind.UPGRADE, charge, old.payment_method,
                                      previous=old, credit=credit)
        new = replace(new, transaction_id=tx.id)

        self._store_subscription(old, new, EVENT_SUBSCRIPTION_UPGRADED, actor.user_id)
        self._save_subscriptions()
        self._log("SUBSCRIPTION", f"{new.id}: {old.tier.value} -> {tier.value}, "
                                  f"credit {credit}, charged {charge}")
        return new

    def cancel_subscription(self, actor: ActorContext, subscription_id: str) -> OperationResult[Subscription]:
        """Admin-only. Cancels the subscription and blocks the lender."""
        return self._run(self._end_subscription, actor, subscription_id,
                         SubscriptionStatus.CANCELLED, EVENT_SUBSCRIPTION_CANCELLED, BLOCKED_REASON_CANCELLED,
                         "cancel")

    def suspend_subscription(self, actor: ActorContext, subscription_id: str) -> OperationResult[Subscription]:
        """Admin-only. Suspends the subscription and blocks the lender."""
        return self._run(self._end_subscription, actor, subscription_id,
                         SubscriptionStatus.SUSPENDED, EVENT_SUBSCRIPTION_SUSPENDED, BLOCKED_REASON_SUSPENDED,
                         "suspend")

    def _end_subscription(self, actor, subscription_id, status, kind, reason, verb) -> Subscription:
        require_admin(actor, f"{verb} subscriptions")
        old = self._require_subscription(subscription_id)
        if old.status is status:
            return old
        new = replace(old, status=status, updated_at=self._current_time)
        self._store_subscription(old, new, kind, actor.user_id)
        if not self._lender_has_other_active(new.lender_id, new.id):
            self._set_lender_access(new.lender_id, True, reason)
        self._save_subscriptions()
        return new

    def update_auto_renew(
        self,
        actor: ActorContext,
        subscription_id: str,
        auto_renew: bool,
    ) -> OperationResult[Subscription]:
        return self._run(self._update_auto_renew, actor, subscription_id, auto_renew)

    def _update_auto_renew(self, actor, subscription_id, auto_renew) -> Subscription:
        old = self._require_subscription(subscription_id)
        require_self_or_admin(actor, old.lender_id, "change auto-renew")
        if old.auto_renew == bool(auto_renew):
            return old
        new = replace(old, auto_renew=bool(auto_renew), updated_at=self._current_time)
        self._store_subscription(old, new, EVENT_AUTO_RENEW_CHANGED, actor.user_id)
        self._save_subscriptions()
        return new

    def check_expirations(self) -> OperationResult[ExpirationReport]:
        """
        Expire lapsed subscriptions and send reminders.

        - Active subscriptions with now > expiry become expired and their
          lender is blocked. Those with auto-renew set are flagged
          auto_renew_due; no payment is taken.
        - Active subscriptions expiring within 7 days get one reminder per
          calendar day.
        """
        return self._run(self._check_expirations)

    def _check_expirations(self) -> ExpirationReport:
        now = self._current_time
        expired, reminders, auto_renew_due = [], [], []

        for old in list(self.subscriptions.values()):
            if old.status is not SubscriptionStatus.ACTIVE:
                continue
            if old.is_expired_at(now):
                new = replace(old, status=SubscriptionStatus.EXPIRED, updated_at=now)
                self._store_subscription(old, new, EVENT_SUBSCRIPTION_EXPIRED, SYSTEM_ACTOR)
                if not self._lender_has_other_active(new.lender_id, new.id):
                    self._set_lender_access(new.lender_id, True, BLOCKED_REASON_EXPIRED)
                expired.append(new.id)
                self._log("EXPIRED", f"{new.id}: {new.lender_id} expired {new.expiry_date.date()}")
                if new.auto_renew:
                    self._emit(EVENT_AUTO_RENEW_DUE, new.id, SYSTEM_ACTOR)
                    auto_renew_due.append(new.id)
            elif is_reminder_due(old, now, REMINDER_WINDOW_DAYS):
                new = replace(old, last_reminder_date=now)
                self._store_subscription(old, new, EVENT_SUBSCRIPTION_REMINDER, SYSTEM_ACTOR)
                reminders.append(new.id)
                self._log("REMINDER", f"{new.id}: expires {new.expiry_date.date()}")

        if expired or reminders:
            self._save_subscriptions()
        return ExpirationReport(tuple(expired), tuple(reminders), tuple(auto_renew_due))

    # ========================================================================
    # COLLECTORS
    # ========================================================================

    def _require_collector(self, collector_id: str) -> Collector:
        collector = self.collectors.get(collector_id)
        if collector is None:
            raise NotFoundError(f"Unknown collector: {collector_id}")
        return collector

    def list_collectors(self, **filters) -> List[Collector]:
        """Directory listing; see collectors.filter_collectors() for filters."""
        return collectors_mod.filter_collectors(self.collectors.values(), **filters)

    def register_collector(self, actor: ActorContext, data: Mapping[str, Any]) -> OperationResult[Collector]:
        return self._run(self._register_collector, actor, data)

    def _register_collector(self, actor, data) -> Collector:
        require_admin(actor, "register collectors")
        collector = collectors_mod.create_collector(self._generate_id("collector"), data, self._current_time)
        self.collectors[collector.id] = collector
        self._save_collectors()
        self._emit(EVENT_COLLECTOR_REGISTERED, collector.id, actor.user_id,
                   None, collectors_mod.to_dict(collector))
        return collector

    def report_collector(
        self,
        actor: ActorContext,
        collector_id: str,
        reason: Any,
        details: str,
        evidence: str = "",
    ) -> OperationResult[CollectorReport]:
        """Admin-only. Files a report and drops the collector back to pending."""
        return self._run(self._report_collector, actor, collector_id, reason, details, evidence)

    def _report_collector(self, actor, collector_id, reason, details, evidence) -> CollectorReport:
        require_admin(actor, "report collectors")
        old = self._require_collector(collector_id)
        now = self._current_time
        report = collectors_mod.build_report(old, reason, details, evidence, actor, now)
        new = collectors_mod.mark_reported(old, report, now)
        self.collectors[new.id] = new
        self.collector_reports.append(report)
        self._save_collectors()
        self._emit(EVENT_COLLECTOR_REPORTED, new.id, actor.user_id,
                   collectors_mod.to_dict(old), collectors_mod.to_dict(new))
        self._log("COLLECTOR", f"{new.id} reported: {report.reason.value}")
        return report

    def verify_collector(self, actor: ActorContext, collector_id: str) -> OperationResult[Collector]:
        return self._run(self._verify_collector, actor, collector_id)

    def _verify_collector(self, actor, collector_id) -> Collector:
        require_admin(actor, "verify collectors")
        old = self._require_collector(collector_id)
        new = collectors_mod.mark_verified(old, self._current_time)
        self.collectors[new.id] = new
        self._save_collectors()
        self._emit(EVENT_COLLECTOR_VERIFIED, new.id, actor.user_id,
                   collectors_mod.to_dict(old), collectors_mod.to_dict(new))
        return new

    def delete_collector(
        self,
        actor: ActorContext,
        collector_id: str,
        confirm: Optional[Callable[[Collector], bool]] = None,
    ) -> OperationResult[Collector]:
        return self._run(self._delete_collector, actor, collector_id, confirm)

    def _delete_collector(self, actor, collector_id, confirm) -> Collector:
        require_admin(actor, "delete collectors")
        collector = self._require_collector(collector_id)
        if confirm is not None and not confirm(collector):
            raise ConfirmationDeclined(f"Deletion of {collector_id} was not confirmed")
        del self.collectors[collector_id]
        self._save_collectors()
        self._emit(EVENT_COLLECTOR_DELETED, collector_id, actor.user_id,
                   collectors_mod.to_dict(collector), {})
        return collector

    def __repr__(self) -> str:
        return (f"MPesewa({self.name!r}, t={self._current_time.isoformat()}, "
                f"ledgers={len(self.ledgers)}, blacklist={len(self.blacklisted_users)}, "
                f"subscriptions={len(self.subscriptions)})")
