"""
Test fixtures for deterministic testing.

This module provides:
- calendar: event builders pinned to T0 and fake calendar sources
- clock: a controllable clock and a manual timer for the scheduler
"""

from .calendar import (
    T0,
    FailingCalendarSource,
    GatedCalendarSource,
    HangingCalendarSource,
    event,
    signals,
)
from .clock import FakeClock, ManualTicker, async_test

__all__ = [
    "T0",
    "event",
    "signals",
    "GatedCalendarSource",
    "FailingCalendarSource",
    "HangingCalendarSource",
    "FakeClock",
    "ManualTicker",
    "async_test",
]
