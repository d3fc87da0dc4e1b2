"""
Mode Engine

Chooses which of four top-level views to show (capture, prep, synthesis,
neutral) from calendar context, and explains the choice.

Data flows one way: events -> signals -> decision -> capsule. Only the
scheduler holds state.

Usage:
    from modeos.modes import EvaluationScheduler, StaticCalendarSource

    scheduler = EvaluationScheduler(StaticCalendarSource(events))
    await scheduler.start()
    scheduler.current_capsule
"""

from .audit import AuditLog
from .calendar_source import (
    CachedCalendarSource,
    CalendarSnapshot,
    CalendarSource,
    StaticCalendarSource,
    file_calendar_source,
    read_events_file,
)
from .capsule import build_capsule, confidence_note
from .engine import MAX_ALTERNATIVES, decide, matching_modes, pinned_decision, signals_used
from .ledger import InMemorySynthesisLedger, SynthesisLedger
from .models import (
    BLOCKED_TRIGGERS,
    MODE_LABELS,
    MODE_PRIORITY,
    REQUESTABLE_TRIGGERS,
    ActionType,
    AdjacencySuggestion,
    Alternative,
    AuditEvent,
    CalendarEvent,
    CapsuleAction,
    Confidence,
    DecisionCapsule,
    EvaluationResult,
    Mode,
    ModeDecision,
    Pin,
    Signals,
    Trigger,
    modes_by_priority,
)
from .scenarios import Scenario, get_scenario, list_scenarios, replay_checkpoints
from .scheduler import EvaluationScheduler
from .signals import coerce_events, format_duration, last_ended_event, normalize

__all__ = [
    # Models
    "Mode",
    "Confidence",
    "Trigger",
    "ActionType",
    "BLOCKED_TRIGGERS",
    "REQUESTABLE_TRIGGERS",
    "MODE_PRIORITY",
    "MODE_LABELS",
    "modes_by_priority",
    "CalendarEvent",
    "Signals",
    "Alternative",
    "ModeDecision",
    "Pin",
    "CapsuleAction",
    "AdjacencySuggestion",
    "DecisionCapsule",
    "AuditEvent",
    "EvaluationResult",
    # Pipeline
    "normalize",
    "coerce_events",
    "last_ended_event",
    "format_duration",
    "decide",
    "matching_modes",
    "pinned_decision",
    "signals_used",
    "MAX_ALTERNATIVES",
    "build_capsule",
    "confidence_note",
    # Collaborators
    "CalendarSnapshot",
    "CalendarSource",
    "StaticCalendarSource",
    "CachedCalendarSource",
    "file_calendar_source",
    "read_events_file",
    "SynthesisLedger",
    "InMemorySynthesisLedger",
    "AuditLog",
    # Scheduling
    "EvaluationScheduler",
    "Scenario",
    "get_scenario",
    "list_scenarios",
    "replay_checkpoints",
]
