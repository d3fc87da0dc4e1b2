"""Synthesis completion lookups used to fill last_event_has_open_synthesis."""

from collections.abc import Iterable
from typing import Protocol, runtime_checkable


@runtime_checkable
class SynthesisLedger(Protocol):
    def is_completed(self, event_id: str) -> bool: ...


class InMemorySynthesisLedger:
    """Set-backed ledger for fixtures, scenarios and the CLI."""

    def __init__(self, completed: Iterable[str] = ()):
        self._completed: set[str] = {str(event_id) for event_id in completed}

    def is_completed(self, event_id: str) -> bool:
        return str(event_id) in self._completed

    def mark_completed(self, event_id: str) -> None:
        self._completed.add(str(event_id))

    @property
    def completed(self) -> frozenset[str]:
        return frozenset(self._completed)

    def __repr__(self) -> str:
        return f"InMemorySynthesisLedger(completed={sorted(self._completed)!r})"
