"""
scheduled_events.py - Minimal Event Scheduler

The platform has no background timers. Periodic work (expiration checks,
default scans, ledger refreshes) is expressed as Events in a heap and run
when the caller advances time.

Core concepts:
1. Event: Immutable description of what should happen and when
2. EventScheduler: Simple priority queue for due event retrieval
3. Handlers: Plain functions (event, platform) -> result

The platform's event_log is the audit trail; the scheduler keeps no event
status beyond the ids it has already executed.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING
import heapq

from .core import EXPIRATION_CHECK_INTERVAL, DEFAULT_SCAN_INTERVAL

if TYPE_CHECKING:
    from .platform import MPesewa


# Actions
ACTION_LEDGER_REFRESH = "ledger_refresh"
ACTION_DEFAULT_SCAN = "default_scan"
ACTION_EXPIRATION_CHECK = "expiration_check"

# Priorities within one timestamp: ledgers are brought up to date before
# the default scan reads them.
PRIORITY_LEDGER_REFRESH = 10
PRIORITY_DEFAULT_SCAN = 20
PRIORITY_EXPIRATION_CHECK = 30


# ============================================================================
# EVENT DATA STRUCTURE
# ============================================================================

@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable scheduled event.

    Sorting: by trigger_time, then priority (lower=first), then action.

    Attributes:
        trigger_time: When this event should execute
        priority: Execution order within same timestamp (0=first)
        action: Event type string ("expiration_check", "default_scan", ...)
        params: Event-specific parameters as frozen tuple of (key, value) pairs
        interval: For periodic events, the time between runs (None = one-shot)
    """
    trigger_time: datetime
    priority: int = 0
    action: str = ""
    params: tuple = ()
    interval: Optional[timedelta] = None

    def __lt__(self, other: 'Event') -> bool:
        if self.trigger_time != other.trigger_time:
            return self.trigger_time < other.trigger_time
        if self.priority != other.priority:
            return self.priority < other.priority
        return self.action < other.action

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    @property
    def event_id(self) -> str:
        """Deterministic ID for deduplication."""
        params_str = "|".join(f"{k}={v}" for k, v in sorted(self.params))
        return f"{self.action}:{self.trigger_time.isoformat()}:{params_str}"


# ============================================================================
# EVENT SCHEDULER
# ============================================================================

EventHandler = Callable[[Event, 'MPesewa'], Any]


class EventScheduler:
    """
    Minimal event scheduler using a priority queue.

    - Events are scheduled in advance
    - get_due() returns events ready to execute
    - An event id runs at most once
    """

    def __init__(self):
        self._heap: List[Event] = []
        self._handlers: Dict[str, EventHandler] = {}
        self._executed: set = set()

    def register(self, action: str, handler: EventHandler) -> None:
        """Register a handler function for an action type."""
        self._handlers[action] = handler

    def schedule(self, event: Event) -> str:
        """Add an event to the pending queue. Returns the event_id."""
        heapq.heappush(self._heap, event)
        return event.event_id

    def schedule_many(self, events: List[Event]) -> List[str]:
        return [self.schedule(event) for event in events]

    def get_due(self, as_of: datetime) -> List[Event]:
        """
        Get and remove events due for execution.

        Returns events with trigger_time <= as_of, in execution order.
        Already-executed and duplicate events are skipped.
        """
        due = []
        seen = set()
        while self._heap and self._heap[0].trigger_time <= as_of:
            event = heapq.heappop(self._heap)
            if event.event_id in self._executed or event.event_id in seen:
                continue
            seen.add(event.event_id)
            due.append(event)
        return due

    def execute(self, event: Event, platform: 'MPesewa') -> Any:
        """
        Execute a single event via its registered handler.

        Returns the handler's result, or None if no handler is registered.

        Raises:
            Exception: Any exception raised by the handler propagates unchanged.
        """
        handler = self._handlers.get(event.action)
        if not handler:
            return None
        result = handler(event, platform)
        self._executed.add(event.event_id)
        return result

    def step(self, as_of: datetime, platform: 'MPesewa') -> List[Any]:
        """
        Run all due events and return their non-None results.

        A periodic event is rescheduled once it has run, even if its handler
        raised. When a handler raises, the events not yet run go back on the
        heap and the exception propagates.
        """
        results = []
        due = self.get_due(as_of)
        for index, event in enumerate(due):
            try:
                result = self.execute(event, platform)
            except Exception:
                self.schedule_many(due[index + 1:])
                raise
            finally:
                if event.interval is not None:
                    self.schedule(replace(event, trigger_time=next_occurrence(event, as_of)))
            if result is not None:
                results.append(result)
        return results

    def pending_count(self) -> int:
        return len(self._heap)

    def peek_next(self) -> Optional[Event]:
        """Peek at next scheduled event without removing it."""
        return self._heap[0] if self._heap else None

    def has_pending(self, action: str) -> bool:
        return any(event.action == action for event in self._heap)

    def clear_executed(self) -> None:
        """Clear the executed event tracking (for testing/reset)."""
        self._executed.clear()


# ============================================================================
# EVENT FACTORY FUNCTIONS
# ============================================================================

def next_occurrence(event: Event, as_of: datetime) -> datetime:
    """
    Next trigger time of a periodic event that ran at or before as_of.

    Missed ticks collapse into one: after a long step the next run is one
    interval after as_of.
    """
    following = event.trigger_time + event.interval
    if following <= as_of:
        return as_of + event.interval
    return following


def expiration_check_event(at: datetime, interval: Optional[timedelta] = EXPIRATION_CHECK_INTERVAL) -> Event:
    """Create a subscription expiration check, repeating hourly by default."""
    return Event(
        trigger_time=at,
        priority=PRIORITY_EXPIRATION_CHECK,
        action=ACTION_EXPIRATION_CHECK,
        interval=interval,
    )


def default_scan_event(at: datetime, interval: Optional[timedelta] = DEFAULT_SCAN_INTERVAL) -> Event:
    """Create a blacklist default scan, repeating daily by default."""
    return Event(
        trigger_time=at,
        priority=PRIORITY_DEFAULT_SCAN,
        action=ACTION_DEFAULT_SCAN,
        interval=interval,
    )


def ledger_refresh_event(at: datetime, ledger_id: Optional[str] = None) -> Event:
    """Create a ledger recompute, for one ledger or (ledger_id=None) every open ledger."""
    params = (("ledger_id", ledger_id),) if ledger_id else ()
    return Event(
        trigger_time=at,
        priority=PRIORITY_LEDGER_REFRESH,
        action=ACTION_LEDGER_REFRESH,
        params=params,
    )
