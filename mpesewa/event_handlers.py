"""
event_handlers.py - Event Handler Functions

Plain functions (event, platform) -> result. Each handler is a thin adapter
that calls one MPesewa operation. Periodic events are rescheduled by the
scheduler itself (see Event.interval).

Handlers unwrap the platform's OperationResult so that a failure in a
periodic pass propagates out of the scheduler instead of being dropped.
"""

from __future__ import annotations
from typing import Any, Dict, TYPE_CHECKING

from .scheduled_events import (
    Event, EventScheduler,
    ACTION_EXPIRATION_CHECK, ACTION_DEFAULT_SCAN, ACTION_LEDGER_REFRESH,
)

if TYPE_CHECKING:
    from .platform import MPesewa


# ============================================================================
# HANDLER FUNCTIONS
# ============================================================================

def handle_expiration_check(event: Event, platform: 'MPesewa'):
    """Run the subscription expiration scan."""
    return platform.check_expirations().unwrap()


def handle_default_scan(event: Event, platform: 'MPesewa'):
    """Bring open ledgers up to date, then promote defaulted borrowers."""
    platform.refresh_ledgers().unwrap()
    return platform.scan_for_defaults().unwrap()


def handle_ledger_refresh(event: Event, platform: 'MPesewa'):
    """Recompute one ledger, or every open ledger when no ledger_id is given."""
    ledger_id = event.params_dict.get("ledger_id")
    if ledger_id:
        return platform.recompute_ledger(ledger_id).unwrap()
    return platform.refresh_ledgers().unwrap()


# ============================================================================
# HANDLER REGISTRY
# ============================================================================

DEFAULT_HANDLERS: Dict[str, Any] = {
    ACTION_EXPIRATION_CHECK: handle_expiration_check,
    ACTION_DEFAULT_SCAN: handle_default_scan,
    ACTION_LEDGER_REFRESH: handle_ledger_refresh,
}


def create_default_scheduler() -> EventScheduler:
    """Create an EventScheduler with all default handlers registered."""
    scheduler = EventScheduler()
    for action, handler in DEFAULT_HANDLERS.items():
        scheduler.register(action, handler)
    return scheduler
