"""
Signal Normalizer

Turns a calendar snapshot and the current time into the small set of signals
the decision engine reads. Pure: no I/O, no logging, no clock reads.

Rules:
- All-day events never produce signals.
- Malformed events are dropped and counted, never fatal.
- Overlapping live events resolve to the one ending soonest (then earliest
  start, then id), so its end governs the capture -> synthesis boundary.
- Events beyond the look-ahead / look-back windows are invisible.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from modeos.config import TimingConfig, get_timing_config
from modeos.errors import MalformedEventError

from .models import CalendarEvent, Signals, ensure_aware

RawEvent = CalendarEvent | Mapping


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def coerce_events(events: Iterable[RawEvent]) -> tuple[list[CalendarEvent], int]:
    """
    Coerce raw events and drop the malformed ones.

    Returns:
        (well-formed events, number dropped)
    """
    valid: list[CalendarEvent] = []
    dropped = 0
    for raw in events:
        if isinstance(raw, CalendarEvent):
            event = raw
        else:
            try:
                event = CalendarEvent.from_dict(raw)
            except (MalformedEventError, TypeError, ValueError):
                dropped += 1
                continue
        if not event.is_well_formed():
            dropped += 1
            continue
        valid.append(event)
    return valid, dropped


def _timed(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    return [e for e in events if not e.is_all_day]


def _current_event(events: list[CalendarEvent], now: datetime) -> CalendarEvent | None:
    live = [e for e in events if e.start_time <= now < e.end_time]
    if not live:
        return None
    return min(live, key=lambda e: (e.end_time, e.start_time, e.id))


def _next_event(
    events: list[CalendarEvent], now: datetime, config: TimingConfig
) -> CalendarEvent | None:
    horizon = now + timedelta(minutes=config.lookahead_minutes)
    upcoming = [e for e in events if now < e.start_time <= horizon]
    if not upcoming:
        return None
    return min(upcoming, key=lambda e: (e.start_time, e.id))


def _last_event(
    events: list[CalendarEvent], now: datetime, config: TimingConfig
) -> CalendarEvent | None:
    horizon = now - timedelta(minutes=config.lookback_minutes)
    ended = [e for e in events if horizon <= e.end_time <= now]
    if not ended:
        return None
    # latest end wins; ties go to the later start, then the higher id
    return max(ended, key=lambda e: (e.end_time, e.start_time, e.id))


def last_ended_event(
    events: Iterable[RawEvent] | None,
    now: datetime,
    config: TimingConfig | None = None,
) -> CalendarEvent | None:
    """
    The event whose synthesis status feeds `last_event_has_open_synthesis`.

    Callers look its completion up in storage and pass the answer back to
    normalize() as `synthesis_open`.
    """
    if events is None:
        return None
    config = config or get_timing_config()
    valid, _ = coerce_events(events)
    return _last_event(_timed(valid), ensure_aware(now), config)


def normalize(
    events: Iterable[RawEvent] | None,
    now: datetime,
    *,
    synthesis_open: bool = True,
    config: TimingConfig | None = None,
) -> Signals:
    """
    Derive decision signals from a calendar snapshot.

    Args:
        events: Normalized events (or raw mappings). None means no usable
            calendar view, e.g. a critically stale snapshot.
        now: Evaluation time. Naive values are taken as UTC.
        synthesis_open: Whether the most recently ended event still lacks a
            recorded synthesis.
        config: Timing thresholds (process config if None).
    """
    if events is None:
        return Signals(calendar_available=False)

    config = config or get_timing_config()
    now = ensure_aware(now)

    valid, dropped = coerce_events(events)
    timed = _timed(valid)

    current = _current_event(timed, now)
    upcoming = _next_event(timed, now, config)
    last = _last_event(timed, now, config)

    return Signals(
        in_event=current is not None,
        minutes_to_next_start=_minutes(upcoming.start_time - now) if upcoming else None,
        minutes_since_last_end=_minutes(now - last.end_time) if last else None,
        last_event_has_open_synthesis=bool(synthesis_open) if last else False,
        minutes_to_current_end=_minutes(current.end_time - now) if current else None,
        current_event_title=current.title or None if current else None,
        next_event_title=upcoming.title or None if upcoming else None,
        last_event_title=last.title or None if last else None,
        calendar_available=True,
        dropped_events=dropped,
    )


def format_duration(minutes: float | None) -> str:
    """Render a minute count as "N min", "H hr" or "H hr M min"."""
    if minutes is None or not math.isfinite(minutes) or minutes < 0:
        minutes = 0
    whole = int(math.floor(minutes))
    if whole < 60:
        return f"{whole} min"
    hours, remainder = divmod(whole, 60)
    if remainder == 0:
        return f"{hours} hr"
    return f"{hours} hr {remainder} min"
