"""
lifecycle_engine.py - Lifecycle Engine

Drives the platform's periodic work from the caller's clock.

Execution order each step():
1. Advance platform time
2. Process scheduled events (in priority order)
3. Repeat until no more events fire (a handler may schedule follow-ups)

The platform's event_log is the audit trail - no separate event status
tracking needed.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Iterable, List, Optional

from .platform import MPesewa
from .scheduled_events import (
    Event, EventScheduler,
    expiration_check_event, default_scan_event,
)
from .event_handlers import create_default_scheduler


class LifecycleEngine:
    """
    Runs expiration checks, default scans and ledger refreshes.

    Features:
    - Hourly subscription expiration check, daily default scan
    - Cascading event support (repeat until stable)
    - Immediate catch-up when the host application regains focus
    """

    def __init__(
        self,
        platform: MPesewa,
        scheduler: Optional[EventScheduler] = None,
    ):
        """
        Initialize lifecycle engine.

        Args:
            platform: The platform to operate on
            scheduler: Event scheduler (created with default handlers if not provided)
        """
        self.platform = platform
        self.scheduler = scheduler or create_default_scheduler()

        # Configuration
        self.max_passes = 10  # Safety limit for cascading events
        self.verbose = platform.verbose

    def schedule(self, event: Event) -> str:
        return self.scheduler.schedule(event)

    def schedule_many(self, events: List[Event]) -> List[str]:
        return self.scheduler.schedule_many(events)

    def start(self) -> List[Any]:
        """
        Queue the periodic scans at the platform's current time and run them.

        Returns the results of the initial run.
        """
        now = self.platform.current_time
        self.scheduler.schedule(default_scan_event(now))
        self.scheduler.schedule(expiration_check_event(now))
        if self.verbose:
            print(f"[LIFECYCLE] started at {now.isoformat()}")
        return self.step(now)

    def step(self, timestamp: datetime) -> List[Any]:
        """
        Advance time and execute all due events.

        Args:
            timestamp: New timestamp (must not be before the platform's clock)

        Returns:
            Non-None handler results, in execution order
        """
        self.platform.advance_time(timestamp)
        results: List[Any] = []

        for _ in range(self.max_passes):
            pass_results = self.scheduler.step(timestamp, self.platform)
            results.extend(pass_results)
            if not pass_results:
                break

        return results

    def run(self, timestamps: Iterable[datetime]) -> List[Any]:
        """Run engine through a sequence of timestamps."""
        results: List[Any] = []
        for timestamp in timestamps:
            results.extend(self.step(timestamp))
        return results

    def on_visibility_regained(self) -> List[Any]:
        """
        Catch up immediately, without waiting for the next scheduled tick.

        Runs the expiration check, then refreshes ledgers and runs the
        default scan, at the platform's current time. Queued events keep
        their schedule.
        """
        if self.verbose:
            print(f"[LIFECYCLE] visibility regained at {self.platform.current_time.isoformat()}")
        report = self.platform.check_expirations().unwrap()
        self.platform.refresh_ledgers().unwrap()
        created = self.platform.scan_for_defaults().unwrap()
        return [report, created]
