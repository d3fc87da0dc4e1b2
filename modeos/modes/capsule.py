"""
Decision Capsule Builder

Turns a ModeDecision into the "Why this view?" artifact the UI renders.
Pure and total: one capsule per decision, no I/O.
"""

from .engine import MAX_ALTERNATIVES
from .models import (
    MODE_LABELS,
    MODE_PRIORITY,
    ActionType,
    AdjacencySuggestion,
    CapsuleAction,
    Confidence,
    DecisionCapsule,
    Mode,
    ModeDecision,
)

CONFIDENCE_NOTES: dict[Confidence, str] = {
    Confidence.HIGH: "Strong signal with no competing context",
    Confidence.MEDIUM: "Good signal but other options available",
    Confidence.LOW: "Weak signal, may want to choose manually",
}

SET_INTENT_LABEL = "Set an intent for today"


def confidence_note(confidence: Confidence) -> str:
    return CONFIDENCE_NOTES[confidence]


def _adjacency(decision: ModeDecision) -> AdjacencySuggestion | None:
    if decision.pinned:
        return None
    alternative_modes = {a.mode for a in decision.alternatives}
    if decision.mode == Mode.PREP and Mode.SYNTHESIS in alternative_modes:
        return AdjacencySuggestion(
            label="Review last meeting outcomes",
            target_mode=Mode.SYNTHESIS,
            reason="A recent meeting still has open synthesis",
        )
    return None


def build_capsule(decision: ModeDecision) -> DecisionCapsule:
    """
    Build the display capsule for a decision.

    Alternatives are clamped to three, keeping the highest-priority ones.
    Actions: one switch_view per alternative, plus set_intent when neutral.
    """
    alternatives = tuple(
        sorted(decision.alternatives, key=lambda a: MODE_PRIORITY[a.mode], reverse=True)
    )[:MAX_ALTERNATIVES]

    actions = [
        CapsuleAction(
            type=ActionType.SWITCH_VIEW,
            label=f"Switch to {MODE_LABELS[alt.mode]}",
            target=alt.mode,
        )
        for alt in alternatives
    ]
    if decision.mode == Mode.NEUTRAL:
        actions.append(CapsuleAction(type=ActionType.SET_INTENT, label=SET_INTENT_LABEL))

    return DecisionCapsule(
        mode=decision.mode,
        view_label=MODE_LABELS[decision.mode],
        confidence=decision.confidence,
        confidence_note=confidence_note(decision.confidence),
        reason=decision.reason,
        signals_used=decision.signals_used,
        alternatives=alternatives,
        would_change_if=decision.would_change_if,
        actions=tuple(actions),
        adjacency=_adjacency(decision),
        pinned=decision.pinned,
    )
