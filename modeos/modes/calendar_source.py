"""
Calendar Boundary

The engine never talks to a calendar API directly. It asks a CalendarSource
for a snapshot (events + fetch time) and judges freshness itself:

- fresh:             age < stale_after_seconds
- stale:             usable, but a refresh is due
- critically stale:  age >= critical_stale_seconds, treated as no calendar
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from modeos.config import TimingConfig, get_timing_config
from modeos.errors import CalendarUnavailableError

from .models import ensure_aware, utc_now
from .signals import RawEvent

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class CalendarSnapshot:
    """A list of events and the moment they were fetched."""

    events: tuple[RawEvent, ...]
    fetched_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        object.__setattr__(self, "events", tuple(self.events))
        object.__setattr__(self, "fetched_at", ensure_aware(self.fetched_at))

    def age_seconds(self, now: datetime) -> float:
        return max(0.0, (ensure_aware(now) - self.fetched_at).total_seconds())

    def is_stale(self, now: datetime, stale_after_seconds: float) -> bool:
        return self.age_seconds(now) >= stale_after_seconds

    def is_critically_stale(self, now: datetime, critical_stale_seconds: float) -> bool:
        return self.age_seconds(now) >= critical_stale_seconds

    def describe_age(self, now: datetime) -> str:
        minutes = int(self.age_seconds(now) // 60)
        if minutes < 1:
            return "just now"
        if minutes == 1:
            return "1 minute ago"
        if minutes < 60:
            return f"{minutes} minutes ago"
        hours = minutes // 60
        if hours == 1:
            return "1 hour ago"
        return f"{hours} hours ago"


@runtime_checkable
class CalendarSource(Protocol):
    async def fetch_snapshot(self) -> CalendarSnapshot: ...


class StaticCalendarSource:
    """
    Fixture source: always returns the same events.

    The snapshot is stamped with the clock's current time on every fetch
    unless `fetched_at` pins it, so it only goes stale when asked to.
    """

    def __init__(
        self,
        events: Iterable[RawEvent] = (),
        fetched_at: datetime | None = None,
        clock: Clock | None = None,
    ):
        self.events: tuple[RawEvent, ...] = tuple(events)
        self.fetched_at = ensure_aware(fetched_at) if fetched_at else None
        self._clock = clock or utc_now

    async def fetch_snapshot(self) -> CalendarSnapshot:
        return CalendarSnapshot(self.events, self.fetched_at or self._clock())

    def __repr__(self) -> str:
        return f"StaticCalendarSource(events={len(self.events)})"


FetchEvents = Callable[[], Awaitable[Iterable[RawEvent]]]


class CachedCalendarSource:
    """
    Wraps a live fetch function with a snapshot cache.

    - Fresh cache: returned without calling `fetch`.
    - Stale or empty cache: `fetch` is called and the cache replaced.
    - Fetch failure: the stale cache is served if it is not critically
      stale, else CalendarUnavailableError is raised.
    """

    def __init__(
        self,
        fetch: FetchEvents,
        config: TimingConfig | None = None,
        clock: Clock | None = None,
    ):
        self._fetch = fetch
        self.config = config or get_timing_config()
        self._clock = clock or utc_now
        self._cache: CalendarSnapshot | None = None

    async def fetch_snapshot(self) -> CalendarSnapshot:
        now = self._clock()
        cache = self._cache

        if cache is not None and not cache.is_stale(now, self.config.stale_after_seconds):
            return cache

        try:
            events = await self._fetch()
        except Exception as e:
            if cache is not None and not cache.is_critically_stale(
                now, self.config.critical_stale_seconds
            ):
                logger.warning(
                    "Calendar fetch failed, serving cached snapshot from %s: %s",
                    cache.describe_age(now),
                    e,
                )
                return cache
            raise CalendarUnavailableError(f"Calendar fetch failed and no usable cache: {e}") from e

        self._cache = CalendarSnapshot(tuple(events), now)
        logger.debug("Calendar snapshot refreshed: %d events", len(self._cache.events))
        return self._cache

    def clear(self) -> None:
        self._cache = None

    def info(self) -> dict[str, Any]:
        """Cache status for diagnostics."""
        now = self._clock()
        cache = self._cache
        if cache is None:
            return {
                "has_cached_data": False,
                "is_stale": True,
                "is_critically_stale": True,
                "event_count": 0,
                "last_fetched_at": None,
                "cache_age": None,
            }
        return {
            "has_cached_data": True,
            "is_stale": cache.is_stale(now, self.config.stale_after_seconds),
            "is_critically_stale": cache.is_critically_stale(
                now, self.config.critical_stale_seconds
            ),
            "event_count": len(cache.events),
            "last_fetched_at": cache.fetched_at.isoformat(),
            "cache_age": cache.describe_age(now),
        }


# =============================================================================
# FILE-BACKED SOURCE
# =============================================================================


def read_events_file(path: str | Path) -> list[RawEvent]:
    """
    Read calendar events from a JSON file.

    Accepts a bare list of events or an object with an "events" list.

    Raises:
        CalendarUnavailableError: if the file is missing, unreadable or not
            shaped like an event list.
    """
    path = Path(path)
    try:
        payload = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise CalendarUnavailableError(f"Cannot read events from {path}: {e}") from e

    if isinstance(payload, dict):
        payload = payload.get("events")
    if not isinstance(payload, list):
        raise CalendarUnavailableError(f"{path}: expected a list of events")
    return payload


def file_calendar_source(
    path: str | Path,
    config: TimingConfig | None = None,
    clock: Clock | None = None,
) -> CachedCalendarSource:
    """A cached source that re-reads `path` whenever the snapshot goes stale."""

    async def fetch() -> list[RawEvent]:
        return await asyncio.to_thread(read_events_file, path)

    return CachedCalendarSource(fetch, config=config, clock=clock)
