# MODE OS - Core Library
"""
Exports for cli.py, the API server and other consumers.
"""

from .config import TimingConfig, get_timing_config, load_timing_config
from .errors import (
    CalendarUnavailableError,
    ConfigError,
    MalformedEventError,
    ModeEngineError,
    UnknownTriggerError,
)
from .modes import (
    EvaluationScheduler,
    Mode,
    Trigger,
    build_capsule,
    decide,
    normalize,
)

__all__ = [
    "TimingConfig",
    "get_timing_config",
    "load_timing_config",
    "ModeEngineError",
    "MalformedEventError",
    "UnknownTriggerError",
    "CalendarUnavailableError",
    "ConfigError",
    "Mode",
    "Trigger",
    "normalize",
    "decide",
    "build_capsule",
    "EvaluationScheduler",
]
