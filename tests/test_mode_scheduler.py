"""
Tests for the evaluation scheduler.

Covers:
- lifecycle: app_open once, periodic boundary timer, deterministic stop
- pin precedence across periodic evaluations, unpin
- single-flight coalescing and force supersession
- collaborator failures (fetch error, timeout, stale snapshot, ledger error)
- audit events, logging and subscribers
"""

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta

import pytest

from modeos.config import TimingConfig
from modeos.errors import UnknownTriggerError
from modeos.modes import (
    AuditLog,
    Confidence,
    EvaluationScheduler,
    InMemorySynthesisLedger,
    Mode,
    StaticCalendarSource,
    Trigger,
    get_scenario,
)
from modeos.observability import calendar_fetch_failures, evaluations_coalesced
from tests.fixtures import (
    T0,
    FailingCalendarSource,
    FakeClock,
    GatedCalendarSource,
    HangingCalendarSource,
    ManualTicker,
    async_test,
    event,
)


def make_scheduler(events=(), *, clock=None, ticker=None, ledger=None, config=None, calendar=None):
    clock = clock or FakeClock(T0)
    ticker = ticker or ManualTicker()
    return EvaluationScheduler(
        calendar or StaticCalendarSource(events, clock=clock),
        ledger=ledger,
        config=config or TimingConfig(),
        clock=clock,
        sleep=ticker.sleep,
    )


async def next_result(scheduler, ticker, timeout=1.0):
    """Fire the periodic timer once and wait for what it publishes."""
    results: asyncio.Queue = asyncio.Queue()
    unsubscribe = scheduler.subscribe(results.put_nowait)
    try:
        ticker.fire()
        return await asyncio.wait_for(results.get(), timeout)
    finally:
        unsubscribe()


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    @async_test
    async def test_start_publishes_app_open(self):
        scheduler = make_scheduler([event("retro", -5, 60)])
        result = await scheduler.start()
        try:
            assert result.trigger == Trigger.APP_OPEN
            assert scheduler.current_mode == Mode.CAPTURE
            assert scheduler.current_capsule.view_label == "Live Capture"
            assert scheduler.is_running
        finally:
            await scheduler.stop()

    @async_test
    async def test_start_is_idempotent(self):
        scheduler = make_scheduler()
        await scheduler.start()
        await scheduler.start()
        try:
            assert len(scheduler.audit_log) == 1
        finally:
            await scheduler.stop()

    @async_test
    async def test_periodic_timer_publishes_boundary_changes(self):
        clock, ticker = FakeClock(T0), ManualTicker()
        scheduler = make_scheduler([event("standup", 40, 15)], clock=clock, ticker=ticker)
        first = await scheduler.start()
        try:
            assert first.mode == Mode.NEUTRAL
            clock.advance(minutes=20)
            result = await next_result(scheduler, ticker)
            assert result.trigger == Trigger.MEETING_BOUNDARY_CHANGE
            assert (result.mode, result.decision.confidence) == (Mode.PREP, Confidence.HIGH)
            assert ticker.intervals[0] == 60
        finally:
            await scheduler.stop()

    @async_test
    async def test_stop_cancels_timer(self):
        scheduler = make_scheduler()
        await scheduler.start()
        await scheduler.stop()
        assert not scheduler.is_running

    @async_test
    async def test_nothing_published_before_start(self):
        scheduler = make_scheduler()
        assert scheduler.current_result is None
        assert scheduler.current_mode is None
        assert scheduler.current_capsule is None


# =============================================================================
# Pin
# =============================================================================


class TestPin:
    @async_test
    async def test_force_then_periodic_then_unpin(self):
        ticker = ManualTicker()
        scheduler = make_scheduler([event("retro", -5, 60)], ticker=ticker)
        await scheduler.start()
        try:
            assert scheduler.current_mode == Mode.CAPTURE

            forced = scheduler.force_mode(Mode.PREP)
            assert forced.trigger == Trigger.FORCE
            assert scheduler.current_mode == Mode.PREP

            for _ in range(2):
                result = await next_result(scheduler, ticker)
                assert result.trigger == Trigger.MEETING_BOUNDARY_CHANGE
                assert (result.mode, result.decision.confidence) == (Mode.PREP, Confidence.HIGH)
                assert result.decision.pinned

            unpinned = await scheduler.unpin()
            assert unpinned.trigger == Trigger.UNPIN
            assert unpinned.mode == Mode.CAPTURE
            assert scheduler.pin is None

            result = await next_result(scheduler, ticker)
            assert result.mode == Mode.CAPTURE
        finally:
            await scheduler.stop()

    @async_test
    async def test_force_is_synchronous_and_replaces_pin(self):
        clock = FakeClock(T0)
        scheduler = make_scheduler(clock=clock)
        scheduler.force_mode("synthesis")
        assert scheduler.pin.mode == Mode.SYNTHESIS
        assert scheduler.pin.set_at == T0

        clock.advance(minutes=1)
        scheduler.force_mode(Mode.CAPTURE)
        assert scheduler.pin.mode == Mode.CAPTURE
        assert scheduler.pin.set_at == T0 + timedelta(minutes=1)
        assert scheduler.current_capsule.pinned is True

    @async_test
    async def test_force_unknown_mode_raises(self):
        scheduler = make_scheduler()
        with pytest.raises(ValueError):
            scheduler.force_mode("focus")
        assert scheduler.pin is None

    @async_test
    async def test_pin_survives_scenario_load(self):
        scheduler = make_scheduler()
        scheduler.force_mode(Mode.NEUTRAL)
        result = await scheduler.load_scenario(get_scenario("active-meeting"), now=T0)
        assert result.mode == Mode.NEUTRAL
        assert result.decision.pinned


# =============================================================================
# Single-flight
# =============================================================================


class TestSingleFlight:
    @async_test
    async def test_arrivals_during_a_run_coalesce_into_one_rerun(self):
        source = GatedCalendarSource([event("retro", -5, 60)])
        scheduler = make_scheduler(calendar=source)
        coalesced_before = evaluations_coalesced.value

        first = asyncio.create_task(scheduler.evaluate(Trigger.APP_OPEN))
        await source.started.wait()
        second = asyncio.create_task(scheduler.evaluate(Trigger.MEETING_BOUNDARY_CHANGE))
        third = asyncio.create_task(scheduler.evaluate("meeting_boundary_change"))
        await asyncio.sleep(0)
        source.gate.set()

        results = await asyncio.gather(first, second, third)

        assert source.fetch_count == 2
        assert evaluations_coalesced.value - coalesced_before == 1
        assert len(scheduler.audit_log) == 1
        assert all(r is results[0] for r in results)
        assert results[0].trigger == Trigger.MEETING_BOUNDARY_CHANGE

    @async_test
    async def test_sequential_evaluations_do_not_rerun(self):
        source = GatedCalendarSource()
        source.gate.set()
        scheduler = make_scheduler(calendar=source)
        await scheduler.evaluate(Trigger.APP_OPEN)
        await scheduler.tick()
        assert source.fetch_count == 2
        assert [e.trigger for e in scheduler.audit_log.history()] == [
            Trigger.APP_OPEN,
            Trigger.MEETING_BOUNDARY_CHANGE,
        ]

    @async_test
    async def test_force_supersedes_in_flight_evaluation(self):
        source = GatedCalendarSource([event("retro", -5, 60)])
        scheduler = make_scheduler(calendar=source)

        pending = asyncio.create_task(scheduler.evaluate(Trigger.APP_OPEN))
        await source.started.wait()
        scheduler.force_mode(Mode.SYNTHESIS)
        source.gate.set()
        result = await pending

        assert result.trigger == Trigger.FORCE
        assert scheduler.current_mode == Mode.SYNTHESIS
        assert [e.trigger for e in scheduler.audit_log.history()] == [Trigger.FORCE]

    @async_test
    async def test_request_is_fire_and_forget(self):
        scheduler = make_scheduler([event("review", 10, 30)])
        task = scheduler.request(Trigger.APP_OPEN)
        result = await task
        assert result.mode == Mode.PREP


# =============================================================================
# Triggers
# =============================================================================


class TestTriggers:
    @async_test
    async def test_unknown_trigger_raises(self):
        scheduler = make_scheduler()
        with pytest.raises(UnknownTriggerError, match="Unknown trigger"):
            await scheduler.evaluate("window_resize")
        assert len(scheduler.audit_log) == 0

    @async_test
    async def test_ui_noise_trigger_is_rejected(self):
        scheduler = make_scheduler()
        with pytest.raises(UnknownTriggerError, match="may never drive"):
            await scheduler.evaluate("blur_focus")

    @pytest.mark.parametrize("name", ["force", "unpin", "scenario_load", Trigger.FORCE])
    @async_test
    async def test_dedicated_triggers_cannot_be_requested(self, name):
        scheduler = make_scheduler([event("retro", -5, 60)])
        await scheduler.evaluate(Trigger.APP_OPEN)
        with pytest.raises(UnknownTriggerError, match="cannot be requested directly"):
            await scheduler.evaluate(name)
        assert scheduler.pin is None
        assert [e.trigger for e in scheduler.audit_log.history()] == [Trigger.APP_OPEN]
        assert scheduler.audit_log.override_rate() == 0.0

    @async_test
    async def test_request_rejects_dedicated_trigger(self):
        scheduler = make_scheduler()
        with pytest.raises(UnknownTriggerError, match="use force_mode"):
            scheduler.request("force")

    @async_test
    async def test_request_validates_immediately(self):
        scheduler = make_scheduler()
        with pytest.raises(UnknownTriggerError):
            scheduler.request("idle_timeout")


# =============================================================================
# Collaborator failures
# =============================================================================


class TestCollaboratorFailures:
    @async_test
    async def test_fetch_error_means_no_calendar_view(self):
        failures_before = calendar_fetch_failures.value
        scheduler = make_scheduler(calendar=FailingCalendarSource())
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert (result.mode, result.decision.confidence) == (Mode.NEUTRAL, Confidence.LOW)
        assert result.signals.calendar_available is False
        assert calendar_fetch_failures.value - failures_before == 1

    @async_test
    async def test_fetch_timeout_means_no_calendar_view(self):
        config = replace(TimingConfig(), fetch_timeout_seconds=0.01)
        scheduler = make_scheduler(calendar=HangingCalendarSource(), config=config)
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert result.mode == Mode.NEUTRAL
        assert result.decision.reason == "Calendar unavailable; no meeting context"

    @async_test
    async def test_critically_stale_snapshot_is_ignored(self):
        clock = FakeClock(T0)
        source = StaticCalendarSource([event("retro", -5, 60)], fetched_at=T0 - timedelta(minutes=31), clock=clock)
        scheduler = make_scheduler(calendar=source, clock=clock)
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert (result.mode, result.decision.confidence) == (Mode.NEUTRAL, Confidence.LOW)

    @async_test
    async def test_stale_snapshot_is_still_used(self):
        clock = FakeClock(T0)
        source = StaticCalendarSource([event("retro", -5, 60)], fetched_at=T0 - timedelta(minutes=10), clock=clock)
        scheduler = make_scheduler(calendar=source, clock=clock)
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert result.mode == Mode.CAPTURE

    @async_test
    async def test_completed_synthesis_suppresses_synthesis_mode(self):
        ledger = InMemorySynthesisLedger({"kickoff"})
        scheduler = make_scheduler([event("kickoff", -65, 60)], ledger=ledger)
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert result.mode == Mode.NEUTRAL

    @async_test
    async def test_open_synthesis_selects_synthesis_mode(self):
        scheduler = make_scheduler([event("kickoff", -65, 60)])
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert (result.mode, result.decision.confidence) == (Mode.SYNTHESIS, Confidence.HIGH)

    @async_test
    async def test_ledger_error_treated_as_open(self):
        class BrokenLedger:
            def is_completed(self, event_id):
                raise OSError("ledger offline")

        scheduler = make_scheduler([event("kickoff", -65, 60)], ledger=BrokenLedger())
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert result.mode == Mode.SYNTHESIS

    @async_test
    async def test_malformed_events_are_dropped(self):
        scheduler = make_scheduler([{"id": "broken"}, event("retro", -5, 60)])
        result = await scheduler.evaluate(Trigger.APP_OPEN)
        assert result.mode == Mode.CAPTURE
        assert result.signals.dropped_events == 1

    @async_test
    async def test_start_survives_event_with_bad_attendees(self):
        broken = {
            "id": "broken",
            "start_time": "2026-03-02T08:30:00Z",
            "end_time": "2026-03-02T09:30:00Z",
            "attendees": 5,
        }
        scheduler = make_scheduler([broken, event("standup", 10, 15)])
        try:
            result = await scheduler.start()
            assert result.trigger == Trigger.APP_OPEN
            assert (result.mode, result.decision.confidence) == (Mode.PREP, Confidence.HIGH)
            assert result.signals.dropped_events == 1
        finally:
            await scheduler.stop()


# =============================================================================
# Publication
# =============================================================================


class TestPublication:
    @async_test
    async def test_one_audit_event_per_publication(self):
        clock = FakeClock(T0)
        audit_log = AuditLog()
        scheduler = EvaluationScheduler(
            StaticCalendarSource([event("retro", -5, 60)], clock=clock),
            config=TimingConfig(),
            audit_log=audit_log,
            clock=clock,
            sleep=ManualTicker().sleep,
        )
        await scheduler.evaluate(Trigger.APP_OPEN)
        scheduler.force_mode(Mode.PREP)
        await scheduler.unpin()

        history = audit_log.history()
        assert [e.trigger for e in history] == [Trigger.APP_OPEN, Trigger.FORCE, Trigger.UNPIN]
        assert [(e.previous_mode, e.new_mode) for e in history] == [
            (None, Mode.CAPTURE),
            (Mode.CAPTURE, Mode.PREP),
            (Mode.PREP, Mode.CAPTURE),
        ]
        assert all(e.evaluation_id.startswith("eval-") for e in history)
        assert history[0].reason == '"Retro" is in progress'

    @async_test
    async def test_publication_logs_audit_fields(self, caplog):
        scheduler = make_scheduler([event("review", 10, 30)])
        with caplog.at_level(logging.INFO, logger="modeos.modes.scheduler"):
            await scheduler.evaluate(Trigger.APP_OPEN)
        records = [r for r in caplog.records if r.getMessage().startswith("Mode decision published")]
        assert len(records) == 1
        record = records[0]
        assert record.trigger == "app_open"
        assert record.previous_mode is None
        assert record.new_mode == "prep"
        assert record.confidence == "HIGH"

    @async_test
    async def test_failing_subscriber_does_not_break_publication(self, caplog):
        scheduler = make_scheduler()
        received = []

        def broken(result):
            raise RuntimeError("render failed")

        scheduler.subscribe(broken)
        scheduler.subscribe(received.append)
        with caplog.at_level(logging.ERROR, logger="modeos.modes.scheduler"):
            await scheduler.evaluate(Trigger.APP_OPEN)

        assert len(received) == 1
        assert scheduler.current_mode == Mode.NEUTRAL
        assert any("subscriber" in r.getMessage() for r in caplog.records)

    @async_test
    async def test_unsubscribe(self):
        scheduler = make_scheduler()
        received = []
        unsubscribe = scheduler.subscribe(received.append)
        await scheduler.evaluate(Trigger.APP_OPEN)
        unsubscribe()
        unsubscribe()
        await scheduler.tick()
        assert len(received) == 1


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarioLoad:
    @async_test
    async def test_load_scenario_cancels_timer_and_freezes_clock(self):
        scheduler = make_scheduler()
        await scheduler.start()
        result = await scheduler.load_scenario(get_scenario("post-meeting"), now=T0)
        try:
            assert not scheduler.is_running
            assert result.trigger == Trigger.SCENARIO_LOAD
            assert (result.mode, result.decision.confidence) == (Mode.SYNTHESIS, Confidence.HIGH)
            assert scheduler.now() == T0
        finally:
            await scheduler.stop()

    @async_test
    async def test_load_bare_events(self):
        scheduler = make_scheduler()
        result = await scheduler.load_scenario([event("standup", 5, 15)], now=T0)
        assert result.mode == Mode.PREP

    @async_test
    async def test_jump_through_lifecycle_checkpoints(self):
        scenario = get_scenario("meeting-lifecycle")
        scheduler = make_scheduler()
        loaded = await scheduler.load_scenario(scenario, now=T0)
        assert loaded.mode == scenario.expected_mode
        for checkpoint in scenario.checkpoints:
            result = await scheduler.jump_to(T0 + timedelta(minutes=checkpoint.offset_minutes))
            assert result.mode == checkpoint.expected_mode, checkpoint.id
