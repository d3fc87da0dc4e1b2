"""
Evaluation Scheduler

Owns *when* the decision engine runs and holds the only mutable state in the
mode system: the pin and the last published result.

Triggers:
- app_open                 once, from start()
- meeting_boundary_change  periodic timer (boundary_interval_seconds), tick()
- force                    force_mode(): pin + immediate publish
- unpin                    unpin(): clear pin + re-evaluate
- scenario_load            load_scenario(): swap in a fixture, evaluate once

Single-flight: one evaluation at a time. A trigger that arrives while a run
is suspended on the calendar fetch marks the run for a re-run; the run
discards its own result and evaluates once more with the newest trigger.
Any number of arrivals coalesce into that one re-run.

Every publication records one AuditEvent and logs one INFO line.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from modeos.config import TimingConfig, get_timing_config
from modeos.observability import (
    EvaluationContext,
    calendar_fetch_failures,
    dropped_events,
    evaluation_duration,
    evaluations_coalesced,
    evaluations_total,
    forced_overrides,
    pinned_gauge,
)

from .audit import AuditLog
from .calendar_source import CalendarSource, StaticCalendarSource
from .capsule import build_capsule
from .engine import decide
from .ledger import InMemorySynthesisLedger, SynthesisLedger
from .models import (
    AuditEvent,
    CalendarEvent,
    DecisionCapsule,
    EvaluationResult,
    Mode,
    ModeDecision,
    Pin,
    Signals,
    Trigger,
    ensure_aware,
    utc_now,
)
from .scenarios import Scenario, default_anchor
from .signals import RawEvent, last_ended_event, normalize

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]
Subscriber = Callable[[EvaluationResult], None]


def _frozen_clock(moment: datetime) -> Clock:
    def clock() -> datetime:
        return moment

    return clock


class EvaluationScheduler:
    """
    Drives mode evaluations and publishes results.

    Args:
        calendar: Source of calendar snapshots.
        ledger: Synthesis completion lookups (empty in-memory ledger if None).
        config: Timing thresholds (process config if None).
        audit_log: Where audit events go (new bounded log if None).
        clock: Returns the current time. Injected by tests.
        sleep: Awaited between periodic triggers. Injected by tests.
    """

    def __init__(
        self,
        calendar: CalendarSource,
        ledger: SynthesisLedger | None = None,
        config: TimingConfig | None = None,
        audit_log: AuditLog | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ):
        self.calendar = calendar
        self.ledger: SynthesisLedger = ledger or InMemorySynthesisLedger()
        self.config = config or get_timing_config()
        self.audit_log = audit_log or AuditLog()
        self._clock: Clock = clock or utc_now
        self._sleep: Sleep = sleep or asyncio.sleep

        self._pin: Pin | None = None
        self._result: EvaluationResult | None = None
        self._subscribers: list[Subscriber] = []

        self._started = False
        self._timer_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._pending_trigger: Trigger | None = None
        self._rerun = False
        # bumped by force_mode so a run that was already fetching is discarded
        self._generation = 0
        self._requests: set[asyncio.Task] = set()

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def now(self) -> datetime:
        return ensure_aware(self._clock())

    @property
    def pin(self) -> Pin | None:
        return self._pin

    @property
    def current_result(self) -> EvaluationResult | None:
        return self._result

    @property
    def current_decision(self) -> ModeDecision | None:
        return self._result.decision if self._result else None

    @property
    def current_capsule(self) -> DecisionCapsule | None:
        return self._result.capsule if self._result else None

    @property
    def current_mode(self) -> Mode | None:
        return self._result.mode if self._result else None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a result callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> EvaluationResult | None:
        """Evaluate app_open once and start the periodic boundary timer."""
        if self._started:
            return self._result
        self._started = True
        result = await self.evaluate(Trigger.APP_OPEN)
        self._start_timer()
        return result

    async def stop(self) -> None:
        """Cancel the timer and any in-flight evaluation."""
        self._started = False
        await self._cancel_timer()

        tasks = [t for t in (self._inflight, *self._requests) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._inflight = None
        self._requests.clear()

    def _start_timer(self) -> None:
        if self.is_running:
            return
        self._timer_task = asyncio.create_task(self._boundary_loop(), name="mode-boundary-timer")

    async def _cancel_timer(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _boundary_loop(self) -> None:
        interval = self.config.boundary_interval_seconds
        while True:
            await self._sleep(interval)
            try:
                await self.evaluate(Trigger.MEETING_BOUNDARY_CHANGE)
            except Exception:
                logger.exception("Periodic mode evaluation failed")

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def evaluate(self, trigger: Trigger | str = Trigger.MEETING_BOUNDARY_CHANGE) -> EvaluationResult:
        """
        Evaluate through the single-flight gate.

        Only app_open and meeting_boundary_change may be requested here;
        force, unpin and scenario_load have their own operations.

        Raises:
            UnknownTriggerError: for unknown, blocked or dedicated trigger names.

        Returns:
            The result published for this trigger, or for the newer trigger it
            was coalesced into.
        """
        return await self._evaluate(Trigger.parse_requested(trigger))

    async def _evaluate(self, trigger: Trigger) -> EvaluationResult:
        self._pending_trigger = trigger

        if self._inflight is None or self._inflight.done():
            self._rerun = False
            self._inflight = asyncio.create_task(self._run(), name="mode-evaluation")
        else:
            self._rerun = True
            logger.debug("Evaluation in flight, queued re-run for %s", trigger.value)

        return await asyncio.shield(self._inflight)

    def request(self, trigger: Trigger | str = Trigger.MEETING_BOUNDARY_CHANGE) -> asyncio.Task:
        """Fire-and-forget evaluate(). The trigger is validated immediately."""
        trigger = Trigger.parse_requested(trigger)
        task = asyncio.get_running_loop().create_task(self.evaluate(trigger))
        self._requests.add(task)
        task.add_done_callback(self._requests.discard)
        return task

    async def tick(self) -> EvaluationResult:
        """One meeting_boundary_change evaluation, outside the timer."""
        return await self.evaluate(Trigger.MEETING_BOUNDARY_CHANGE)

    def force_mode(self, mode: Mode | str) -> EvaluationResult:
        """
        Pin a mode and publish it immediately.

        Supersedes any in-flight evaluation.

        Raises:
            ValueError: for an unknown mode.
        """
        mode = Mode.parse(mode)
        now = self.now()
        self._pin = Pin(mode=mode, set_at=now)
        self._generation += 1
        pinned_gauge.set(1)
        forced_overrides.inc()

        signals = self._result.signals if self._result else Signals()
        with EvaluationContext() as ctx:
            decision = decide(signals, pin=mode, config=self.config)
            result = EvaluationResult(
                trigger=Trigger.FORCE,
                decision=decision,
                capsule=build_capsule(decision),
                signals=signals,
                evaluated_at=now,
            )
            self._publish(result, ctx.evaluation_id)
        return result

    async def unpin(self) -> EvaluationResult:
        """Clear the pin and re-evaluate from live signals."""
        if self._pin is not None:
            logger.info("Unpinning %s", self._pin.mode.value)
        self._pin = None
        pinned_gauge.set(0)
        return await self._evaluate(Trigger.UNPIN)

    async def load_scenario(
        self,
        scenario: Scenario | Iterable[RawEvent],
        now: datetime | None = None,
    ) -> EvaluationResult:
        """
        Replace the live calendar with a fixture and evaluate once.

        Cancels the periodic timer and freezes the clock at `now` (the
        current minute if None). A Scenario also seeds the synthesis ledger
        with its completions; a bare event list gets an empty ledger.
        """
        await self._cancel_timer()

        anchor = ensure_aware(now) if now else default_anchor()
        if isinstance(scenario, Scenario):
            events: list[RawEvent] = list(scenario.materialize(anchor))
            ledger = scenario.ledger()
            logger.info("Loading scenario %s at %s", scenario.id, anchor.isoformat())
        else:
            events = list(scenario)
            ledger = InMemorySynthesisLedger()
            logger.info("Loading %d fixture events at %s", len(events), anchor.isoformat())

        self._clock = _frozen_clock(anchor)
        self.calendar = StaticCalendarSource(events, clock=self.now)
        self.ledger = ledger
        return await self._evaluate(Trigger.SCENARIO_LOAD)

    async def jump_to(self, now: datetime) -> EvaluationResult:
        """Freeze the clock at `now` and run a boundary check there."""
        self._clock = _frozen_clock(ensure_aware(now))
        return await self.evaluate(Trigger.MEETING_BOUNDARY_CHANGE)

    # =========================================================================
    # EVALUATION
    # =========================================================================

    async def _run(self) -> EvaluationResult:
        while True:
            trigger = self._pending_trigger
            self._rerun = False
            generation = self._generation

            with EvaluationContext() as ctx:
                result = await self._compute(trigger)

                if self._rerun:
                    evaluations_coalesced.inc()
                    logger.debug(
                        "Discarding %s evaluation, newer trigger %s arrived",
                        trigger.value,
                        self._pending_trigger.value,
                    )
                    continue

                if generation != self._generation:
                    logger.debug("Discarding %s evaluation superseded by force", trigger.value)
                    return self._result

                self._publish(result, ctx.evaluation_id)
                return result

    async def _compute(self, trigger: Trigger) -> EvaluationResult:
        with evaluation_duration.time():
            return await self._evaluate_once(trigger)

    async def _evaluate_once(self, trigger: Trigger) -> EvaluationResult:
        events = await self._fetch_events()
        now = self.now()
        synthesis_open = self._synthesis_open(events, now)
        signals = normalize(events, now, synthesis_open=synthesis_open, config=self.config)

        if signals.dropped_events:
            dropped_events.inc(signals.dropped_events)
            logger.warning(
                "Dropped %d malformed calendar event(s)",
                signals.dropped_events,
                extra={"dropped_events": signals.dropped_events},
            )

        pin = self._pin.mode if self._pin else None
        decision = decide(signals, pin=pin, config=self.config)
        result = EvaluationResult(
            trigger=trigger,
            decision=decision,
            capsule=build_capsule(decision),
            signals=signals,
            evaluated_at=now,
        )
        return result

    async def _fetch_events(self) -> tuple[RawEvent, ...] | None:
        """Current events, or None when there is no usable calendar view."""
        timeout = self.config.fetch_timeout_seconds
        try:
            snapshot = await asyncio.wait_for(self.calendar.fetch_snapshot(), timeout=timeout)
        except TimeoutError:
            calendar_fetch_failures.inc()
            logger.warning("Calendar fetch timed out after %ss, no calendar view", timeout)
            return None
        except Exception as e:
            calendar_fetch_failures.inc()
            logger.warning("Calendar fetch failed, no calendar view: %s", e)
            return None

        now = self.now()
        if snapshot.is_critically_stale(now, self.config.critical_stale_seconds):
            calendar_fetch_failures.inc()
            logger.warning(
                "Calendar snapshot from %s is critically stale, ignoring it",
                snapshot.describe_age(now),
            )
            return None
        if snapshot.is_stale(now, self.config.stale_after_seconds):
            logger.info("Using stale calendar snapshot from %s", snapshot.describe_age(now))
        return snapshot.events

    def _synthesis_open(self, events: Iterable[RawEvent] | None, now: datetime) -> bool:
        last: CalendarEvent | None = last_ended_event(events, now, self.config)
        if last is None:
            return False
        try:
            return not self.ledger.is_completed(last.id)
        except Exception as e:
            logger.warning("Synthesis lookup failed for %s, treating as open: %s", last.id, e)
            return True

    def _publish(self, result: EvaluationResult, evaluation_id: str) -> None:
        previous = self._result.mode if self._result else None
        self._result = result

        event = AuditEvent(
            trigger=result.trigger,
            previous_mode=previous,
            new_mode=result.mode,
            confidence=result.decision.confidence,
            reason=result.decision.reason,
            evaluation_id=evaluation_id,
            occurred_at=result.evaluated_at,
        )
        self.audit_log.record(event)
        evaluations_total.inc(trigger=result.trigger.value, mode=result.mode.value)

        logger.info(
            "Mode decision published: %s (%s)",
            event.new_mode.value,
            event.confidence.value,
            extra={
                "trigger": event.trigger.value,
                "previous_mode": previous.value if previous else None,
                "new_mode": event.new_mode.value,
                "confidence": event.confidence.value,
                "reason": event.reason,
                "pinned": result.decision.pinned,
            },
        )

        for callback in list(self._subscribers):
            try:
                callback(result)
            except Exception:
                logger.exception("Mode subscriber %r failed", callback)
