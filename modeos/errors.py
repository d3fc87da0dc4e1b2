"""
Error taxonomy for the mode engine.

Only UnknownTriggerError is meant to reach a caller: it marks a wiring bug.
Data-quality and collaborator errors are recovered where they occur.
"""


class ModeEngineError(Exception):
    """Base class for mode engine errors."""


class MalformedEventError(ModeEngineError, ValueError):
    """A raw calendar event is missing fields or has impossible times."""


class CalendarUnavailableError(ModeEngineError):
    """The calendar collaborator could not produce a usable snapshot."""


class UnknownTriggerError(ModeEngineError, ValueError):
    """An evaluation was requested with a trigger name nobody wired up."""


class ConfigError(ModeEngineError, ValueError):
    """The timing configuration file is structurally invalid."""
