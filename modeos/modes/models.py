"""
Mode Engine Models

Types shared by the signal normalizer, the decision engine, the capsule
builder and the evaluation scheduler. All of them are immutable; the one
mutable cell in the system (the pin) lives in the scheduler and is replaced
wholesale with a new Pin.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from modeos.errors import MalformedEventError, UnknownTriggerError

# =============================================================================
# ENUMS
# =============================================================================


class Mode(StrEnum):
    """The four top-level UI states. Closed: see _check_mode_tables()."""

    CAPTURE = "capture"
    PREP = "prep"
    SYNTHESIS = "synthesis"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value: "Mode | str") -> "Mode":
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown mode {value!r} (expected one of: {known})") from None


class Confidence(StrEnum):
    """Strength grade of a decision."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    def downgrade(self) -> "Confidence":
        """One level down; LOW stays LOW."""
        if self is Confidence.HIGH:
            return Confidence.MEDIUM
        return Confidence.LOW

    @property
    def rank(self) -> int:
        return {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}[self]


class Trigger(StrEnum):
    """Named causes of a re-evaluation."""

    APP_OPEN = "app_open"
    MEETING_BOUNDARY_CHANGE = "meeting_boundary_change"
    FORCE = "force"
    UNPIN = "unpin"
    SCENARIO_LOAD = "scenario_load"

    @classmethod
    def parse(cls, value: "Trigger | str") -> "Trigger":
        """Resolve a trigger name, failing loudly on anything unwired."""
        try:
            return cls(value)
        except ValueError:
            pass
        if value in BLOCKED_TRIGGERS:
            raise UnknownTriggerError(
                f"Trigger {value!r} may never drive a mode evaluation"
            )
        known = ", ".join(t.value for t in cls)
        raise UnknownTriggerError(f"Unknown trigger {value!r} (expected one of: {known})")

    @classmethod
    def parse_requested(cls, value: "Trigger | str") -> "Trigger":
        """
        Resolve a trigger a caller may pass to a plain evaluation.

        force, unpin and scenario_load carry side effects (pin, fixture load)
        and only come from their dedicated operations.
        """
        trigger = cls.parse(value)
        if trigger not in REQUESTABLE_TRIGGERS:
            raise UnknownTriggerError(
                f"Trigger {trigger.value!r} cannot be requested directly, "
                f"use {DEDICATED_OPERATIONS[trigger]}"
            )
        return trigger


# UI-noise signals that must not cause automatic switches.
BLOCKED_TRIGGERS = frozenset({"blur_focus", "idle_timeout", "background_poll", "tab_visibility"})

REQUESTABLE_TRIGGERS = frozenset({Trigger.APP_OPEN, Trigger.MEETING_BOUNDARY_CHANGE})
DEDICATED_OPERATIONS: dict[Trigger, str] = {
    Trigger.FORCE: "force_mode()",
    Trigger.UNPIN: "unpin()",
    Trigger.SCENARIO_LOAD: "load_scenario()",
}


class ActionType(StrEnum):
    SWITCH_VIEW = "switch_view"
    SET_INTENT = "set_intent"


# Higher number = higher priority. CAPTURE > PREP > SYNTHESIS > NEUTRAL.
MODE_PRIORITY: dict[Mode, int] = {
    Mode.CAPTURE: 4,
    Mode.PREP: 3,
    Mode.SYNTHESIS: 2,
    Mode.NEUTRAL: 1,
}

MODE_LABELS: dict[Mode, str] = {
    Mode.CAPTURE: "Live Capture",
    Mode.PREP: "Meeting Prep",
    Mode.SYNTHESIS: "Synthesis",
    Mode.NEUTRAL: "Neutral",
}


def _check_mode_tables() -> None:
    for table_name, table in (("MODE_PRIORITY", MODE_PRIORITY), ("MODE_LABELS", MODE_LABELS)):
        missing = set(Mode) - set(table)
        if missing:
            raise RuntimeError(f"{table_name} has no entry for {sorted(missing)}")


_check_mode_tables()


def modes_by_priority() -> tuple[Mode, ...]:
    """All modes, highest priority first."""
    return tuple(sorted(Mode, key=lambda m: MODE_PRIORITY[m], reverse=True))


# =============================================================================
# CALENDAR EVENT
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def parse_timestamp(value: Any, field_name: str = "time") -> datetime:
    """
    Parse an event timestamp.

    Accepts datetime objects, ISO-8601 strings (trailing Z allowed) and epoch
    milliseconds. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, bool):
        raise MalformedEventError(f"{field_name}: boolean is not a timestamp")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedEventError(f"{field_name}: {value!r} out of range") from e
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_aware(datetime.fromisoformat(text))
        except ValueError as e:
            raise MalformedEventError(f"{field_name}: cannot parse {value!r}") from e
    raise MalformedEventError(f"{field_name}: missing or unsupported value {value!r}")


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no", ""})


def _parse_flag(value: Any, event_id: Any) -> bool:
    """Strict boolean: real bools, 0/1 and the usual strings. Anything else is malformed."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise MalformedEventError(f"event {event_id}: is_all_day must be a boolean, got {value!r}")


@dataclass(frozen=True)
class CalendarEvent:
    """
    A normalized, time-boxed calendar event.

    Only id/start_time/end_time/is_all_day drive decisions; title, attendees
    and location are carried for explanations.
    """

    id: str
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    title: str = ""
    attendees: tuple[str, ...] = ()
    location: str | None = None

    def __post_init__(self):
        # frozen: normalise naive datetimes in place
        if isinstance(self.start_time, datetime):
            object.__setattr__(self, "start_time", ensure_aware(self.start_time))
        if isinstance(self.end_time, datetime):
            object.__setattr__(self, "end_time", ensure_aware(self.end_time))

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def is_well_formed(self) -> bool:
        return (
            bool(self.id)
            and isinstance(self.start_time, datetime)
            and isinstance(self.end_time, datetime)
            and self.end_time >= self.start_time
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_all_day": self.is_all_day,
            "title": self.title,
            "attendees": list(self.attendees),
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CalendarEvent":
        """
        Build an event from a raw mapping.

        Accepts snake_case keys and the calendar API's camelCase keys
        (startTime/endTime/isAllDay).

        Raises:
            MalformedEventError on missing id/times, end before start, or a
            non-list attendees / non-boolean all-day field.
        """
        if not isinstance(raw, Mapping):
            raise MalformedEventError(f"event must be a mapping, got {type(raw).__name__}")

        event_id = raw.get("id")
        if event_id is None or str(event_id).strip() == "":
            raise MalformedEventError("event is missing an id")

        start = parse_timestamp(_first_present(raw, "start_time", "startTime", "start"), "start_time")
        end = parse_timestamp(_first_present(raw, "end_time", "endTime", "end"), "end_time")
        if end < start:
            raise MalformedEventError(f"event {event_id}: end_time precedes start_time")

        raw_attendees = raw.get("attendees")
        if raw_attendees is None:
            raw_attendees = ()
        elif not isinstance(raw_attendees, (list, tuple)):
            raise MalformedEventError(
                f"event {event_id}: attendees must be a list, got {type(raw_attendees).__name__}"
            )

        attendees = []
        for attendee in raw_attendees:
            if isinstance(attendee, Mapping):
                label = attendee.get("email") or attendee.get("name")
                if label:
                    attendees.append(str(label))
            elif attendee:
                attendees.append(str(attendee))

        return cls(
            id=str(event_id),
            start_time=start,
            end_time=end,
            is_all_day=_parse_flag(_first_present(raw, "is_all_day", "isAllDay", "all_day"), event_id),
            title=str(_first_present(raw, "title", "summary") or ""),
            attendees=tuple(attendees),
            location=raw.get("location"),
        )


# =============================================================================
# SIGNALS
# =============================================================================


@dataclass(frozen=True)
class Signals:
    """
    Derived, ephemeral facts about `now` relative to the calendar.

    The first four fields are the decision inputs. The rest only feed
    explanations.
    """

    in_event: bool = False
    minutes_to_next_start: float | None = None
    minutes_since_last_end: float | None = None
    last_event_has_open_synthesis: bool = False

    minutes_to_current_end: float | None = None
    current_event_title: str | None = None
    next_event_title: str | None = None
    last_event_title: str | None = None
    calendar_available: bool = True
    dropped_events: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "in_event": self.in_event,
            "minutes_to_next_start": self.minutes_to_next_start,
            "minutes_since_last_end": self.minutes_since_last_end,
            "last_event_has_open_synthesis": self.last_event_has_open_synthesis,
            "minutes_to_current_end": self.minutes_to_current_end,
            "current_event_title": self.current_event_title,
            "next_event_title": self.next_event_title,
            "last_event_title": self.last_event_title,
            "calendar_available": self.calendar_available,
            "dropped_events": self.dropped_events,
        }


# =============================================================================
# DECISION
# =============================================================================


@dataclass(frozen=True)
class Alternative:
    """A mode whose own condition matched but which lost on priority."""

    mode: Mode
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"mode": self.mode.value, "reason": self.reason}


@dataclass(frozen=True)
class ModeDecision:
    """Output of decide(). No identity; regenerated on every evaluation."""

    mode: Mode
    confidence: Confidence
    reason: str
    signals_used: tuple[str, ...] = ()
    alternatives: tuple[Alternative, ...] = ()
    would_change_if: tuple[str, ...] = ()
    pinned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "signals_used": list(self.signals_used),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "would_change_if": list(self.would_change_if),
            "pinned": self.pinned,
        }


@dataclass(frozen=True)
class Pin:
    """An explicit manual override. Replaced, never mutated."""

    mode: Mode
    set_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"mode": self.mode.value, "set_at": self.set_at.isoformat()}


# =============================================================================
# CAPSULE
# =============================================================================


@dataclass(frozen=True)
class CapsuleAction:
    type: ActionType
    label: str
    target: Mode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "label": self.label,
            "target": self.target.value if self.target else None,
        }


@dataclass(frozen=True)
class AdjacencySuggestion:
    """A nudge toward a neighbouring mode the user may want next."""

    label: str
    target_mode: Mode
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "target_mode": self.target_mode.value, "reason": self.reason}


@dataclass(frozen=True)
class DecisionCapsule:
    """The "Why this view?" artifact: a display snapshot of one decision."""

    mode: Mode
    view_label: str
    confidence: Confidence
    confidence_note: str
    reason: str
    signals_used: tuple[str, ...] = ()
    alternatives: tuple[Alternative, ...] = ()
    would_change_if: tuple[str, ...] = ()
    actions: tuple[CapsuleAction, ...] = ()
    adjacency: AdjacencySuggestion | None = None
    pinned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "view_label": self.view_label,
            "confidence": self.confidence.value,
            "confidence_note": self.confidence_note,
            "reason": self.reason,
            "signals_used": list(self.signals_used),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "would_change_if": list(self.would_change_if),
            "actions": [a.to_dict() for a in self.actions],
            "adjacency": self.adjacency.to_dict() if self.adjacency else None,
            "pinned": self.pinned,
        }


# =============================================================================
# SCHEDULER OUTPUTS
# =============================================================================


@dataclass(frozen=True)
class AuditEvent:
    """Durable trace of one published decision."""

    trigger: Trigger
    previous_mode: Mode | None
    new_mode: Mode
    confidence: Confidence
    reason: str
    evaluation_id: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "previous_mode": self.previous_mode.value if self.previous_mode else None,
            "new_mode": self.new_mode.value,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "evaluation_id": self.evaluation_id,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class EvaluationResult:
    """What the scheduler publishes to subscribers."""

    trigger: Trigger
    decision: ModeDecision
    capsule: DecisionCapsule
    signals: Signals
    evaluated_at: datetime

    @property
    def mode(self) -> Mode:
        return self.decision.mode

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "decision": self.decision.to_dict(),
            "capsule": self.capsule.to_dict(),
            "signals": self.signals.to_dict(),
            "evaluated_at": self.evaluated_at.isoformat(),
        }
