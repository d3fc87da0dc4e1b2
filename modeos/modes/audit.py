"""
Audit trail of published decisions.

One AuditEvent per publication (evaluation, force, unpin). The log is
bounded; the oldest entries fall off once max_history is reached.
"""

import threading
from collections import Counter, deque

from .models import AuditEvent, Mode, Trigger


class AuditLog:
    def __init__(self, max_history: int = 200):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._events: deque[AuditEvent] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def history(self, limit: int | None = None) -> list[AuditEvent]:
        """Oldest first. `limit` keeps only the most recent N."""
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def override_rate(self) -> float:
        """Share of recorded decisions that came from an explicit force."""
        events = self.history()
        if not events:
            return 0.0
        forced = sum(1 for e in events if e.trigger == Trigger.FORCE)
        return forced / len(events)

    def mode_counts(self) -> dict[Mode, int]:
        counts = Counter(e.new_mode for e in self.history())
        return {mode: counts.get(mode, 0) for mode in Mode}
