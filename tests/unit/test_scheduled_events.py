"""
test_scheduled_events.py - Unit Tests for the Scheduled Event System

Tests cover:
1. Event creation and properties
2. EventScheduler scheduling and retrieval
3. Event priority ordering
4. Handler registration and execution
5. Periodic rescheduling
6. Event factory functions
"""

import pytest
from datetime import datetime, timedelta

from mpesewa.scheduled_events import (
    Event,
    EventScheduler,
    next_occurrence,
    expiration_check_event,
    default_scan_event,
    ledger_refresh_event,
    ACTION_EXPIRATION_CHECK,
    ACTION_DEFAULT_SCAN,
    ACTION_LEDGER_REFRESH,
)
from mpesewa.event_handlers import (
    handle_expiration_check,
    handle_default_scan,
    handle_ledger_refresh,
    DEFAULT_HANDLERS,
    create_default_scheduler,
)


T = datetime(2025, 3, 15, 9, 0)


class TestEvent:
    """Tests for Event dataclass."""

    def test_event_id_is_deterministic(self):
        """Same content produces same event_id."""
        event1 = Event(trigger_time=T, action="ledger_refresh", params=(("ledger_id", "ledger-000001"),))
        event2 = Event(trigger_time=T, action="ledger_refresh", params=(("ledger_id", "ledger-000001"),))
        assert event1.event_id == event2.event_id

    def test_different_params_different_id(self):
        event1 = Event(trigger_time=T, action="ledger_refresh", params=(("ledger_id", "a"),))
        event2 = Event(trigger_time=T, action="ledger_refresh", params=(("ledger_id", "b"),))
        assert event1.event_id != event2.event_id

    def test_different_time_different_id(self):
        event1 = Event(trigger_time=T, action="default_scan")
        event2 = Event(trigger_time=T + timedelta(hours=1), action="default_scan")
        assert event1.event_id != event2.event_id

    def test_event_ordering_by_time(self):
        early = Event(trigger_time=T, priority=50, action="b")
        late = Event(trigger_time=T + timedelta(minutes=1), priority=0, action="a")
        assert early < late

    def test_event_ordering_by_priority(self):
        first = Event(trigger_time=T, priority=10, action="z")
        second = Event(trigger_time=T, priority=20, action="a")
        assert first < second

    def test_params_dict_property(self):
        event = Event(trigger_time=T, action="x", params=(("a", 1), ("b", "two")))
        assert event.params_dict == {"a": 1, "b": "two"}


class TestEventScheduler:
    """Tests for EventScheduler class."""

    def test_schedule_and_count(self):
        scheduler = EventScheduler()
        assert scheduler.pending_count() == 0
        scheduler.schedule(Event(trigger_time=T, action="a"))
        scheduler.schedule(Event(trigger_time=T + timedelta(days=1), action="b"))
        assert scheduler.pending_count() == 2

    def test_get_due_events(self):
        scheduler = EventScheduler()
        scheduler.schedule(Event(trigger_time=T, action="a"))
        scheduler.schedule(Event(trigger_time=T + timedelta(days=1), action="b"))
        due = scheduler.get_due(T + timedelta(hours=1))
        assert [e.action for e in due] == ["a"]
        assert scheduler.pending_count() == 1

    def test_get_due_priority_order(self):
        scheduler = EventScheduler()
        scheduler.schedule(expiration_check_event(T))
        scheduler.schedule(default_scan_event(T))
        scheduler.schedule(ledger_refresh_event(T))
        due = scheduler.get_due(T)
        assert [e.action for e in due] == [ACTION_LEDGER_REFRESH, ACTION_DEFAULT_SCAN, ACTION_EXPIRATION_CHECK]

    def test_duplicates_returned_once(self):
        scheduler = EventScheduler()
        scheduler.schedule(Event(trigger_time=T, action="a"))
        scheduler.schedule(Event(trigger_time=T, action="a"))
        assert len(scheduler.get_due(T)) == 1

    def test_peek_next(self):
        scheduler = EventScheduler()
        assert scheduler.peek_next() is None
        scheduler.schedule(Event(trigger_time=T + timedelta(days=2), action="later"))
        scheduler.schedule(Event(trigger_time=T, action="sooner"))
        assert scheduler.peek_next().action == "sooner"

    def test_register_and_execute_handler(self):
        scheduler = EventScheduler()
        calls = []

        def handler(event, platform):
            calls.append((event.action, platform))
            return "done"

        scheduler.register("ping", handler)
        assert scheduler.execute(Event(trigger_time=T, action="ping"), "platform") == "done"
        assert calls == [("ping", "platform")]

    def test_executed_event_not_run_twice(self):
        scheduler = EventScheduler()
        calls = []
        scheduler.register("ping", lambda event, platform: calls.append(1))
        event = Event(trigger_time=T, action="ping")
        scheduler.schedule(event)
        scheduler.step(T, None)
        scheduler.schedule(event)
        scheduler.step(T, None)
        assert calls == [1]

    def test_execute_unknown_action_returns_none(self):
        assert EventScheduler().execute(Event(trigger_time=T, action="unknown"), None) is None

    def test_handler_exceptions_propagate(self):
        scheduler = EventScheduler()

        def broken(event, platform):
            raise RuntimeError("boom")

        scheduler.register("broken", broken)
        scheduler.schedule(Event(trigger_time=T, action="broken"))
        with pytest.raises(RuntimeError):
            scheduler.step(T, None)

    def test_schedule_many(self):
        scheduler = EventScheduler()
        ids = scheduler.schedule_many([Event(trigger_time=T, action="a"), Event(trigger_time=T, action="b")])
        assert len(ids) == 2
        assert scheduler.has_pending("a")


class TestPeriodicEvents:
    """Tests for interval rescheduling."""

    def test_periodic_event_rescheduled_after_run(self):
        scheduler = EventScheduler()
        scheduler.register("tick", lambda event, platform: event.trigger_time)
        scheduler.schedule(Event(trigger_time=T, action="tick", interval=timedelta(hours=1)))
        assert scheduler.step(T, None) == [T]
        assert scheduler.peek_next().trigger_time == T + timedelta(hours=1)

    def test_one_shot_event_not_rescheduled(self):
        scheduler = EventScheduler()
        scheduler.register("once", lambda event, platform: None)
        scheduler.schedule(Event(trigger_time=T, action="once"))
        scheduler.step(T, None)
        assert scheduler.pending_count() == 0

    def test_missed_ticks_collapse(self):
        event = Event(trigger_time=T, action="tick", interval=timedelta(hours=1))
        assert next_occurrence(event, T + timedelta(minutes=30)) == T + timedelta(hours=1)
        assert next_occurrence(event, T + timedelta(hours=5)) == T + timedelta(hours=6)

    def test_long_step_runs_periodic_event_once(self):
        scheduler = EventScheduler()
        runs = []
        scheduler.register("tick", lambda event, platform: runs.append(event.trigger_time))
        scheduler.schedule(Event(trigger_time=T, action="tick", interval=timedelta(hours=1)))
        scheduler.step(T + timedelta(days=3), None)
        assert runs == [T]
        assert scheduler.peek_next().trigger_time == T + timedelta(days=3, hours=1)

    def test_failing_periodic_event_keeps_its_schedule(self):
        scheduler = EventScheduler()
        runs = []

        def flaky(event, platform):
            runs.append(event.trigger_time)
            if len(runs) == 1:
                raise RuntimeError("storage unavailable")
            return event.trigger_time

        scheduler.register("check", flaky)
        scheduler.schedule(Event(trigger_time=T, action="check", interval=timedelta(hours=1)))
        with pytest.raises(RuntimeError):
            scheduler.step(T, None)
        assert scheduler.peek_next().trigger_time == T + timedelta(hours=1)
        assert scheduler.step(T + timedelta(hours=1), None) == [T + timedelta(hours=1)]

    def test_events_after_a_failure_stay_pending(self):
        scheduler = EventScheduler()

        def broken(event, platform):
            raise RuntimeError("boom")

        scheduler.register("broken", broken)
        scheduler.register("later", lambda event, platform: "ran")
        scheduler.schedule(Event(trigger_time=T, priority=0, action="broken"))
        scheduler.schedule(Event(trigger_time=T, priority=10, action="later"))
        with pytest.raises(RuntimeError):
            scheduler.step(T, None)
        assert scheduler.has_pending("later")
        assert not scheduler.has_pending("broken")
        assert scheduler.step(T, None) == ["ran"]


class TestEventFactoryFunctions:
    """Tests for event factory functions."""

    def test_expiration_check_event_is_hourly(self):
        event = expiration_check_event(T)
        assert event.action == ACTION_EXPIRATION_CHECK
        assert event.interval == timedelta(hours=1)

    def test_default_scan_event_is_daily(self):
        event = default_scan_event(T)
        assert event.action == ACTION_DEFAULT_SCAN
        assert event.interval == timedelta(days=1)

    def test_ledger_refresh_event(self):
        assert ledger_refresh_event(T).params == ()
        event = ledger_refresh_event(T, "ledger-000001")
        assert event.params_dict == {"ledger_id": "ledger-000001"}
        assert event.interval is None

    def test_refresh_runs_before_scan_before_expiration(self):
        assert ledger_refresh_event(T) < default_scan_event(T) < expiration_check_event(T)


class TestDefaultScheduler:
    """Tests for default scheduler setup."""

    def test_create_default_scheduler(self):
        scheduler = create_default_scheduler()
        assert isinstance(scheduler, EventScheduler)
        assert scheduler.pending_count() == 0

    def test_default_handlers_dict(self):
        assert DEFAULT_HANDLERS == {
            ACTION_EXPIRATION_CHECK: handle_expiration_check,
            ACTION_DEFAULT_SCAN: handle_default_scan,
            ACTION_LEDGER_REFRESH: handle_ledger_refresh,
        }
