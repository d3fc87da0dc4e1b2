"""
Observability module: structured logging, evaluation IDs, metrics.

Usage:
    from modeos.observability import get_logger, EvaluationContext

    logger = get_logger(__name__)

    with EvaluationContext() as ctx:
        logger.info("Evaluating", extra={"trigger": "app_open"})

Metrics:
    from modeos.observability import REGISTRY, evaluations_total

    evaluations_total.inc(trigger="app_open", mode="prep")
"""

from .context import EvaluationContext, get_evaluation_id, set_evaluation_id
from .logging import (
    EvaluationIdFilter,
    HumanFormatter,
    JSONFormatter,
    configure_logging,
    get_logger,
)
from .metrics import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    calendar_fetch_failures,
    dropped_events,
    evaluation_duration,
    evaluations_coalesced,
    evaluations_total,
    forced_overrides,
    pinned_gauge,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    "EvaluationIdFilter",
    # Context
    "EvaluationContext",
    "get_evaluation_id",
    "set_evaluation_id",
    # Metrics
    "REGISTRY",
    "MetricsRegistry",
    "Counter",
    "Gauge",
    "Histogram",
    "evaluations_total",
    "evaluations_coalesced",
    "forced_overrides",
    "calendar_fetch_failures",
    "dropped_events",
    "pinned_gauge",
    "evaluation_duration",
]
