"""
Scenario Library

Named calendar fixtures expressed in minutes relative to an anchor time.
Loading one into the scheduler replaces the live calendar, freezes the clock
at the anchor and seeds the synthesis ledger, so mode decisions can be
replayed deterministically.

Timeline scenarios carry checkpoints: offsets from the anchor with the mode
expected at that moment.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from modeos.config import TimingConfig, get_timing_config

from .engine import decide
from .ledger import InMemorySynthesisLedger
from .models import CalendarEvent, Confidence, Mode, ModeDecision, ensure_aware, utc_now
from .signals import last_ended_event, normalize

# =============================================================================
# MODELS
# =============================================================================


@dataclass(frozen=True)
class ScenarioEvent:
    """An event placed relative to the scenario anchor."""

    id: str
    title: str
    start_minutes: float
    duration_minutes: float
    is_all_day: bool = False
    attendees: tuple[str, ...] = ()

    def materialize(self, anchor: datetime) -> CalendarEvent:
        if self.is_all_day:
            start = anchor.replace(hour=0, minute=0, second=0, microsecond=0)
            end = start + timedelta(days=1)
        else:
            start = anchor + timedelta(minutes=self.start_minutes)
            end = start + timedelta(minutes=self.duration_minutes)
        return CalendarEvent(
            id=self.id,
            start_time=start,
            end_time=end,
            is_all_day=self.is_all_day,
            title=self.title,
            attendees=self.attendees,
        )


@dataclass(frozen=True)
class Checkpoint:
    id: str
    name: str
    offset_minutes: float
    expected_mode: Mode
    description: str = ""


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    description: str
    tags: tuple[str, ...]
    events: tuple[ScenarioEvent, ...] = ()
    completed_synthesis: frozenset[str] = frozenset()
    expected_mode: Mode = Mode.NEUTRAL
    expected_confidence: Confidence | None = None
    checkpoints: tuple[Checkpoint, ...] = ()

    def materialize(self, anchor: datetime) -> list[CalendarEvent]:
        anchor = ensure_aware(anchor)
        return [event.materialize(anchor) for event in self.events]

    def ledger(self) -> InMemorySynthesisLedger:
        return InMemorySynthesisLedger(self.completed_synthesis)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "event_count": len(self.events),
            "expected_mode": self.expected_mode.value,
            "expected_confidence": (
                self.expected_confidence.value if self.expected_confidence else None
            ),
            "checkpoints": [
                {
                    "id": cp.id,
                    "name": cp.name,
                    "offset_minutes": cp.offset_minutes,
                    "expected_mode": cp.expected_mode.value,
                }
                for cp in self.checkpoints
            ],
        }


@dataclass(frozen=True)
class CheckpointResult:
    checkpoint: Checkpoint
    decision: ModeDecision
    evaluated_at: datetime

    @property
    def passed(self) -> bool:
        return self.decision.mode == self.checkpoint.expected_mode


# =============================================================================
# BUILT-IN SCENARIOS
# =============================================================================

SCENARIOS: tuple[Scenario, ...] = (
    Scenario(
        id="empty-slate",
        name="Empty Slate",
        description="Clean state with no meetings. Tests neutral mode.",
        tags=("basic", "neutral"),
        expected_mode=Mode.NEUTRAL,
        expected_confidence=Confidence.LOW,
    ),
    Scenario(
        id="upcoming-meeting-30min",
        name="Meeting in 30 Minutes",
        description="Single meeting starting in 30 minutes, at the far edge of the prep window.",
        tags=("basic", "prep"),
        events=(
            ScenarioEvent(
                "cal-upcoming-1",
                "Q4 Planning Review",
                30,
                60,
                attendees=("alice@example.com", "bob@example.com"),
            ),
        ),
        expected_mode=Mode.PREP,
        expected_confidence=Confidence.MEDIUM,
    ),
    Scenario(
        id="active-meeting",
        name="Meeting In Progress",
        description="Meeting that started 15 minutes ago. Should be in capture mode.",
        tags=("basic", "capture"),
        events=(
            ScenarioEvent(
                "cal-active-1", "Sprint Retrospective", -15, 45, attendees=("team@example.com",)
            ),
        ),
        expected_mode=Mode.CAPTURE,
        expected_confidence=Confidence.HIGH,
    ),
    Scenario(
        id="post-meeting",
        name="Just Finished Meeting",
        description="Meeting ended 5 minutes ago with synthesis still open.",
        tags=("basic", "synthesis"),
        events=(
            ScenarioEvent("cal-finished-1", "Client Kickoff", -65, 60, attendees=("client@acme.com",)),
        ),
        expected_mode=Mode.SYNTHESIS,
        expected_confidence=Confidence.HIGH,
    ),
    Scenario(
        id="overlap-boundary",
        name="Overlap Near Boundary",
        description="Inside a meeting ending in 2 minutes while the next starts in 3.",
        tags=("basic", "capture", "boundary"),
        events=(
            ScenarioEvent("cal-overlap-a", "Architecture Review", -58, 60),
            ScenarioEvent("cal-overlap-b", "Vendor Demo", 3, 30),
        ),
        expected_mode=Mode.CAPTURE,
        expected_confidence=Confidence.MEDIUM,
    ),
    Scenario(
        id="all-day-only",
        name="All-Day Event Only",
        description="An all-day event covering today. All-day events never drive a mode.",
        tags=("basic", "neutral", "edge"),
        events=(ScenarioEvent("cal-allday-1", "Company Offsite", 0, 0, is_all_day=True),),
        expected_mode=Mode.NEUTRAL,
        expected_confidence=Confidence.LOW,
    ),
    Scenario(
        id="back-to-back",
        name="Back-to-Back Meetings",
        description="Three meetings in a row with no breaks. Tests mode transitions.",
        tags=("complex", "transitions"),
        events=(
            ScenarioEvent("cal-b2b-1", "Morning Standup", -90, 30),
            ScenarioEvent("cal-b2b-2", "Design Review", -60, 60),
            ScenarioEvent("cal-b2b-3", "Stakeholder Update", 0, 30),
        ),
        completed_synthesis=frozenset({"cal-b2b-1"}),
        expected_mode=Mode.CAPTURE,
        expected_confidence=Confidence.MEDIUM,
    ),
    Scenario(
        id="busy-monday",
        name="Busy Monday Morning",
        description="Full calendar with 5 meetings; the last one ended still needs synthesis.",
        tags=("complex", "realistic"),
        events=(
            ScenarioEvent("cal-mon-1", "Weekly Team Sync", -180, 60),
            ScenarioEvent("cal-mon-2", "1:1 with Manager", -60, 30),
            ScenarioEvent("cal-mon-3", "Product Planning", 15, 90),
            ScenarioEvent("cal-mon-4", "Lunch & Learn", 180, 60),
            ScenarioEvent("cal-mon-5", "Client Call", 300, 45),
        ),
        completed_synthesis=frozenset({"cal-mon-1"}),
        expected_mode=Mode.PREP,
        expected_confidence=Confidence.MEDIUM,
    ),
    Scenario(
        id="quiet-afternoon",
        name="Quiet Afternoon",
        description="No upcoming meetings, just a synthesized morning meeting.",
        tags=("complex", "neutral"),
        events=(ScenarioEvent("cal-quiet-1", "Morning Meeting", -300, 60),),
        completed_synthesis=frozenset({"cal-quiet-1"}),
        expected_mode=Mode.NEUTRAL,
        expected_confidence=Confidence.LOW,
    ),
    Scenario(
        id="meeting-lifecycle",
        name="Full Meeting Lifecycle",
        description="Walk through a complete meeting from prep to synthesis.",
        tags=("timeline", "lifecycle"),
        events=(
            ScenarioEvent(
                "cal-lifecycle-1",
                "Important Strategy Meeting",
                0,
                60,
                attendees=("ceo@example.com", "cto@example.com"),
            ),
        ),
        expected_mode=Mode.CAPTURE,
        checkpoints=(
            Checkpoint("cp-1-hour-before", "1 Hour Before", -60, Mode.NEUTRAL, "Outside the prep window"),
            Checkpoint("cp-15-min-before", "15 Minutes Before", -15, Mode.PREP, "Prep window"),
            Checkpoint("cp-meeting-start", "Meeting Start", 0, Mode.CAPTURE, "Transition to capture"),
            Checkpoint("cp-mid-meeting", "Mid-Meeting", 30, Mode.CAPTURE, "Active capture"),
            Checkpoint("cp-meeting-end", "Meeting End", 60, Mode.SYNTHESIS, "Transition to synthesis"),
            Checkpoint("cp-15-min-after", "15 Minutes After", 75, Mode.SYNTHESIS, "Still in synthesis window"),
            Checkpoint("cp-1-hour-after", "1 Hour After", 120, Mode.NEUTRAL, "Back to neutral"),
        ),
    ),
    Scenario(
        id="transition-stress",
        name="Rapid Mode Transitions",
        description="Three short meetings with 5-minute gaps. Tests stability during rapid changes.",
        tags=("timeline", "stress"),
        events=(
            ScenarioEvent("cal-stress-1", "Quick Check-in", 0, 15),
            ScenarioEvent("cal-stress-2", "Follow-up Discussion", 20, 15),
            ScenarioEvent("cal-stress-3", "Final Decision", 40, 15),
        ),
        expected_mode=Mode.CAPTURE,
        checkpoints=(
            Checkpoint("stress-cp-1", "Before First", -10, Mode.PREP, "Prep for meeting 1"),
            Checkpoint("stress-cp-2", "In Meeting 1", 5, Mode.CAPTURE, "Capture mode"),
            Checkpoint("stress-cp-3", "Between 1-2", 17, Mode.PREP, "Prep outranks synthesis"),
            Checkpoint("stress-cp-4", "In Meeting 2", 25, Mode.CAPTURE, "Capture mode"),
            Checkpoint("stress-cp-5", "Between 2-3", 37, Mode.PREP, "Prep outranks synthesis"),
            Checkpoint("stress-cp-6", "In Meeting 3", 45, Mode.CAPTURE, "Capture mode"),
            Checkpoint("stress-cp-7", "After All", 60, Mode.SYNTHESIS, "Final synthesis"),
        ),
    ),
)

_BY_ID: dict[str, Scenario] = {s.id: s for s in SCENARIOS}


def get_scenario(scenario_id: str) -> Scenario:
    try:
        return _BY_ID[scenario_id]
    except KeyError:
        known = ", ".join(sorted(_BY_ID))
        raise KeyError(f"Unknown scenario {scenario_id!r} (known: {known})") from None


def list_scenarios(tag: str | None = None) -> list[Scenario]:
    if tag is None:
        return list(SCENARIOS)
    return [s for s in SCENARIOS if tag in s.tags]


def all_tags() -> list[str]:
    return sorted({tag for s in SCENARIOS for tag in s.tags})


# =============================================================================
# REPLAY
# =============================================================================


def decide_at(
    scenario: Scenario,
    anchor: datetime,
    now: datetime,
    config: TimingConfig | None = None,
) -> ModeDecision:
    """Decide the mode for a scenario materialized at `anchor`, seen at `now`."""
    config = config or get_timing_config()
    events = scenario.materialize(anchor)
    ledger = scenario.ledger()
    last = last_ended_event(events, now, config)
    synthesis_open = last is not None and not ledger.is_completed(last.id)
    signals = normalize(events, now, synthesis_open=synthesis_open, config=config)
    return decide(signals, config=config)


def replay_checkpoints(
    scenario: Scenario,
    anchor: datetime | None = None,
    config: TimingConfig | None = None,
) -> list[CheckpointResult]:
    """Evaluate every checkpoint of a timeline scenario, in order."""
    anchor = ensure_aware(anchor) if anchor else default_anchor()
    results = []
    for checkpoint in scenario.checkpoints:
        now = anchor + timedelta(minutes=checkpoint.offset_minutes)
        results.append(
            CheckpointResult(
                checkpoint=checkpoint,
                decision=decide_at(scenario, anchor, now, config),
                evaluated_at=now,
            )
        )
    return results


def default_anchor() -> datetime:
    return utc_now().replace(second=0, microsecond=0)
