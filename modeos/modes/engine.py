"""
Mode Decision Engine

Chooses one mode from a signal set and an optional pin, grades its
confidence and explains the choice.

Priority chain (first match wins):
1. PIN        - a manual pin short-circuits everything, HIGH
2. CAPTURE    - currently inside an event
3. PREP       - an event starts within the prep window
4. SYNTHESIS  - an event ended within the synthesis window and its
                synthesis is still open
5. NEUTRAL    - fallback, always LOW

Confidence:
- Each rule has a base grade (HIGH, or MEDIUM inside the ambiguity band at
  the far edge of its window).
- If any lower-priority rule also matches, the grade drops one level and
  the competitors are reported as alternatives. The chosen mode never
  changes because of a competitor.

decide() is total: any Signals value yields exactly one decision, and equal
inputs yield equal decisions.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass

from modeos.config import TimingConfig, get_timing_config

from .models import Alternative, Confidence, Mode, ModeDecision, Signals
from .signals import format_duration

MAX_ALTERNATIVES = 3

PINNED_REASON = "manually pinned"
PINNED_WOULD_CHANGE_IF = ("explicit unpin or mode switch",)


# =============================================================================
# CONDITIONS
# =============================================================================


def _within(value: float | None, window: float) -> bool:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and 0 <= value <= window


def _near_far_edge(value: float, window: float, band: float) -> bool:
    return value >= window - band


def _capture_matches(signals: Signals, config: TimingConfig) -> bool:
    return signals.in_event is True


def _prep_matches(signals: Signals, config: TimingConfig) -> bool:
    return _within(signals.minutes_to_next_start, config.prep_window_minutes)


def _synthesis_matches(signals: Signals, config: TimingConfig) -> bool:
    return signals.last_event_has_open_synthesis is True and _within(
        signals.minutes_since_last_end, config.synthesis_window_minutes
    )


# =============================================================================
# BASE CONFIDENCE
# =============================================================================


def _capture_confidence(signals: Signals, config: TimingConfig) -> Confidence:
    return Confidence.HIGH


def _prep_confidence(signals: Signals, config: TimingConfig) -> Confidence:
    if _near_far_edge(
        signals.minutes_to_next_start, config.prep_window_minutes, config.ambiguity_band_minutes
    ):
        return Confidence.MEDIUM
    return Confidence.HIGH


def _synthesis_confidence(signals: Signals, config: TimingConfig) -> Confidence:
    if _near_far_edge(
        signals.minutes_since_last_end,
        config.synthesis_window_minutes,
        config.ambiguity_band_minutes,
    ):
        return Confidence.MEDIUM
    return Confidence.HIGH


# =============================================================================
# EXPLANATIONS
# =============================================================================


def _quoted(title: str | None, fallback: str) -> str:
    return f'"{title}"' if title else fallback


def _capture_reason(signals: Signals, config: TimingConfig) -> str:
    return f"{_quoted(signals.current_event_title, 'A meeting')} is in progress"


def _prep_reason(signals: Signals, config: TimingConfig) -> str:
    when = format_duration(signals.minutes_to_next_start)
    return f"{_quoted(signals.next_event_title, 'A meeting')} starts in {when}"


def _synthesis_reason(signals: Signals, config: TimingConfig) -> str:
    ago = format_duration(signals.minutes_since_last_end)
    return f"{_quoted(signals.last_event_title, 'A meeting')} ended {ago} ago"


def _neutral_reason(signals: Signals) -> str:
    if not signals.calendar_available:
        return "Calendar unavailable; no meeting context"
    return "No meetings scheduled or recently ended"


def _capture_would_change(signals: Signals, config: TimingConfig) -> tuple[str, ...]:
    ends = "if the current meeting ends"
    if _within(signals.minutes_to_current_end, math.inf):
        ends += f" (in {format_duration(signals.minutes_to_current_end)})"
    return (ends, "if you manually switch to another mode")


def _prep_would_change(signals: Signals, config: TimingConfig) -> tuple[str, ...]:
    return (
        f"if the meeting start moves more than {_minutes_text(config.prep_window_minutes)} away",
        "if you enter the meeting window",
        "if you manually switch to another mode",
    )


def _synthesis_would_change(signals: Signals, config: TimingConfig) -> tuple[str, ...]:
    return (
        f"if more than {_minutes_text(config.synthesis_window_minutes)} pass since the meeting ended",
        "if the synthesis is marked complete",
        f"if a meeting starts within {_minutes_text(config.prep_window_minutes)}",
    )


def _neutral_would_change(signals: Signals, config: TimingConfig) -> tuple[str, ...]:
    conditions = [
        f"if a meeting appears on your calendar within {_minutes_text(config.prep_window_minutes)}",
        "if you explicitly set an intent",
    ]
    if not signals.calendar_available:
        conditions.append("if the calendar snapshot refreshes")
    return tuple(conditions)


def _minutes_text(minutes: float) -> str:
    value = int(minutes) if float(minutes).is_integer() else round(minutes, 1)
    return f"{value} minutes"


def signals_used(signals: Signals) -> tuple[str, ...]:
    """One human-readable line per signal present in the snapshot."""
    lines: list[str] = []

    if not signals.calendar_available:
        lines.append("Calendar unavailable (stale or failed snapshot)")

    if signals.in_event:
        line = f"Live meeting: {_quoted(signals.current_event_title, 'untitled')}"
        if signals.minutes_to_current_end is not None:
            line += f", ends in {format_duration(signals.minutes_to_current_end)}"
        lines.append(line)

    if signals.minutes_to_next_start is not None:
        lines.append(
            f"Upcoming: {_quoted(signals.next_event_title, 'untitled')} "
            f"in {format_duration(signals.minutes_to_next_start)}"
        )

    if signals.minutes_since_last_end is not None:
        status = "synthesis open" if signals.last_event_has_open_synthesis else "synthesis done"
        lines.append(
            f"Ended: {_quoted(signals.last_event_title, 'untitled')} "
            f"{format_duration(signals.minutes_since_last_end)} ago ({status})"
        )

    if signals.dropped_events:
        lines.append(f"{signals.dropped_events} malformed event(s) ignored")

    if not lines:
        lines.append("No calendar events in relevant windows")

    return tuple(lines)


# =============================================================================
# RULES
# =============================================================================


@dataclass(frozen=True)
class _Rule:
    mode: Mode
    matches: Callable[[Signals, TimingConfig], bool]
    base_confidence: Callable[[Signals, TimingConfig], Confidence]
    reason: Callable[[Signals, TimingConfig], str]
    would_change_if: Callable[[Signals, TimingConfig], tuple[str, ...]]


# Ordered by MODE_PRIORITY, highest first. NEUTRAL is the fallback, not a rule.
_RULES: tuple[_Rule, ...] = (
    _Rule(Mode.CAPTURE, _capture_matches, _capture_confidence, _capture_reason, _capture_would_change),
    _Rule(Mode.PREP, _prep_matches, _prep_confidence, _prep_reason, _prep_would_change),
    _Rule(
        Mode.SYNTHESIS,
        _synthesis_matches,
        _synthesis_confidence,
        _synthesis_reason,
        _synthesis_would_change,
    ),
)


def matching_modes(signals: Signals, config: TimingConfig | None = None) -> tuple[Mode, ...]:
    """Non-neutral modes whose own condition holds, ignoring priority."""
    config = config or get_timing_config()
    return tuple(rule.mode for rule in _RULES if rule.matches(signals, config))


def pinned_decision(mode: Mode | str) -> ModeDecision:
    """The decision returned while a pin is active."""
    return ModeDecision(
        mode=Mode.parse(mode),
        confidence=Confidence.HIGH,
        reason=PINNED_REASON,
        signals_used=(),
        alternatives=(),
        would_change_if=PINNED_WOULD_CHANGE_IF,
        pinned=True,
    )


def decide(
    signals: Signals,
    pin: Mode | str | None = None,
    config: TimingConfig | None = None,
) -> ModeDecision:
    """
    Decide which mode to show.

    Args:
        signals: Output of normalize().
        pin: Manually pinned mode, if any.
        config: Timing thresholds (process config if None).

    Returns:
        ModeDecision. Never raises for a valid pin.
    """
    if pin is not None:
        return pinned_decision(pin)

    config = config or get_timing_config()
    used = signals_used(signals)
    matched = [rule for rule in _RULES if rule.matches(signals, config)]

    if not matched:
        return ModeDecision(
            mode=Mode.NEUTRAL,
            confidence=Confidence.LOW,
            reason=_neutral_reason(signals),
            signals_used=used,
            alternatives=(),
            would_change_if=_neutral_would_change(signals, config),
        )

    winner, competitors = matched[0], matched[1:]

    confidence = winner.base_confidence(signals, config)
    if competitors:
        confidence = confidence.downgrade()

    alternatives = tuple(
        Alternative(mode=rule.mode, reason=rule.reason(signals, config))
        for rule in competitors[:MAX_ALTERNATIVES]
    )

    return ModeDecision(
        mode=winner.mode,
        confidence=confidence,
        reason=winner.reason(signals, config),
        signals_used=used,
        alternatives=alternatives,
        would_change_if=winner.would_change_if(signals, config),
    )
