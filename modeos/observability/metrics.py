"""
In-process metrics for the mode engine.

Counters may carry labels (evaluations_total{trigger,mode}); histograms use
fixed latency buckets. The registry renders Prometheus text for
/api/mode/metrics?format=prometheus and a JSON-friendly dict otherwise.
"""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

LabelSet = tuple[tuple[str, str], ...]

# Seconds. Evaluations are dominated by the calendar fetch.
DEFAULT_BUCKETS: tuple[float, ...] = (0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0)


def _label_set(labels: dict[str, object]) -> LabelSet:
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


def _render_labels(labels: LabelSet) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{key}="{value}"' for key, value in labels)
    return "{" + inner + "}"


@dataclass
class Counter:
    """Monotonic counter, optionally split by labels."""

    name: str
    description: str = ""
    _values: dict[LabelSet, int] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, amount: int = 1, **labels: object) -> None:
        key = _label_set(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    @property
    def value(self) -> int:
        """Total across every label set."""
        with self._lock:
            return sum(self._values.values())

    def value_for(self, **labels: object) -> int:
        with self._lock:
            return self._values.get(_label_set(labels), 0)

    def samples(self) -> list[tuple[LabelSet, int]]:
        with self._lock:
            return sorted(self._values.items())


@dataclass
class Gauge:
    name: str
    description: str = ""
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


@dataclass
class Histogram:
    """Cumulative-bucket histogram of observed durations."""

    name: str
    description: str = ""
    buckets: tuple[float, ...] = DEFAULT_BUCKETS
    _counts: list[int] = field(default_factory=list, repr=False)
    _sum: float = 0.0
    _count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.buckets = tuple(sorted(self.buckets))
        self._counts = [0] * len(self.buckets)

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    self._counts[i] += 1

    @contextmanager
    def time(self) -> Iterator[None]:
        """Observe the wall time of the enclosed block."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    @property
    def avg(self) -> float:
        with self._lock:
            return self._sum / self._count if self._count else 0.0

    def cumulative_buckets(self) -> list[tuple[float, int]]:
        with self._lock:
            return list(zip(self.buckets, self._counts, strict=True))


class MetricsRegistry:
    """Named metrics; asking twice for a name returns the same object."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, description: str = "") -> Counter:
        with self._lock:
            return self._counters.setdefault(name, Counter(name, description))

    def gauge(self, name: str, description: str = "") -> Gauge:
        with self._lock:
            return self._gauges.setdefault(name, Gauge(name, description))

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] = DEFAULT_BUCKETS,
    ) -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, description, buckets)
            return self._histograms[name]

    def to_prometheus(self) -> str:
        """Prometheus text exposition format."""
        with self._lock:
            counters = sorted(self._counters.items())
            gauges = sorted(self._gauges.items())
            histograms = sorted(self._histograms.items())

        lines: list[str] = []

        def header(name: str, description: str, kind: str) -> None:
            if description:
                lines.append(f"# HELP {name} {description}")
            lines.append(f"# TYPE {name} {kind}")

        for name, c in counters:
            header(name, c.description, "counter")
            samples = c.samples() or [((), 0)]
            lines.extend(f"{name}{_render_labels(labels)} {value}" for labels, value in samples)

        for name, g in gauges:
            header(name, g.description, "gauge")
            lines.append(f"{name} {g.value:g}")

        for name, h in histograms:
            header(name, h.description, "histogram")
            for bound, count in h.cumulative_buckets():
                lines.append(f'{name}_bucket{{le="{bound:g}"}} {count}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {h.count}')
            lines.append(f"{name}_sum {h.sum}")
            lines.append(f"{name}_count {h.count}")

        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, dict]:
        with self._lock:
            counters = list(self._counters.items())
            gauges = list(self._gauges.items())
            histograms = list(self._histograms.items())

        result: dict[str, dict] = {}
        for name, c in counters:
            entry: dict = {"type": "counter", "value": c.value}
            labelled = [(labels, value) for labels, value in c.samples() if labels]
            if labelled:
                entry["by_label"] = [{"labels": dict(labels), "value": value} for labels, value in labelled]
            result[name] = entry
        for name, g in gauges:
            result[name] = {"type": "gauge", "value": g.value}
        for name, h in histograms:
            result[name] = {"type": "histogram", "count": h.count, "sum": h.sum, "avg": h.avg}
        return result


REGISTRY = MetricsRegistry()

evaluations_total = REGISTRY.counter(
    "evaluations_total", "Published mode decisions, by trigger and mode"
)
evaluations_coalesced = REGISTRY.counter(
    "evaluations_coalesced_total", "In-flight evaluations discarded for a newer trigger"
)
forced_overrides = REGISTRY.counter("forced_overrides_total", "Explicit force_mode calls")
calendar_fetch_failures = REGISTRY.counter(
    "calendar_fetch_failures_total", "Calendar snapshots that failed, timed out or were too stale"
)
dropped_events = REGISTRY.counter("dropped_events_total", "Malformed calendar events dropped")
pinned_gauge = REGISTRY.gauge("mode_pinned", "1 while a manual pin is active")
evaluation_duration = REGISTRY.histogram(
    "evaluation_duration_seconds", "Wall time of one evaluation including calendar fetch"
)
