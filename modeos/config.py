"""
Centralized configuration for MODE OS.

Deployment switches come from environment variables; decision thresholds come
from config/mode_engine.yaml and fall back to the defaults below.

Usage:
    from modeos.config import get_timing_config

    config = get_timing_config()
    config.prep_window_minutes  # 30
"""

import logging
import math
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from modeos import paths
from modeos.errors import ConfigError

logger = logging.getLogger(__name__)

# ============================================================
# Environment
# ============================================================

LOG_LEVEL: str = os.environ.get("MODEOS_LOG_LEVEL", "INFO")
"""Root log level for configure_logging()."""

LOG_JSON: Optional[bool] = (
    None
    if os.environ.get("MODEOS_LOG_JSON") is None
    else os.environ["MODEOS_LOG_JSON"].lower() in ("1", "true", "yes")
)
"""Force JSON logs on/off. Unset = JSON when stderr is not a TTY."""

EVENTS_FILE: Optional[str] = os.environ.get("MODEOS_EVENTS_FILE")
"""JSON file of calendar events served by the API's default calendar source."""


# ============================================================
# Timing thresholds
# ============================================================


@dataclass(frozen=True)
class TimingConfig:
    """
    Decision thresholds.

    The prep/synthesis windows and the ambiguity band are product defaults
    that still await confirmation, so they are configuration, not constants.
    """

    prep_window_minutes: float = 30
    synthesis_window_minutes: float = 30
    ambiguity_band_minutes: float = 5
    lookahead_minutes: float = 24 * 60
    lookback_minutes: float = 24 * 60
    boundary_interval_seconds: float = 60
    stale_after_seconds: float = 5 * 60
    critical_stale_seconds: float = 30 * 60
    fetch_timeout_seconds: float = 10

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_TIMING_CONFIG = TimingConfig()

_TIMING_KEYS = {f.name for f in fields(TimingConfig)}


def _valid_threshold(name: str, value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning(f"Ignoring non-numeric timing value {name}={value!r}")
        return False
    if not math.isfinite(value) or value < 0:
        logger.warning(f"Ignoring out-of-range timing value {name}={value!r}")
        return False
    if value == 0 and name != "ambiguity_band_minutes":
        logger.warning(f"Ignoring zero timing value {name}")
        return False
    return True


def load_timing_config(path: Optional[str] = None) -> TimingConfig:
    """
    Load timing thresholds from YAML.

    Expected shape:
        timing:
          prep_window_minutes: 30
          synthesis_window_minutes: 30
          ...

    Missing file or missing keys fall back to defaults. Invalid values are
    logged and replaced by their default.

    Raises:
        ConfigError if the file is not a mapping or `timing` is not a mapping.
        yaml.YAMLError if the file is not valid YAML.
    """
    config_path = Path(path) if path else paths.timing_config_path()
    if not config_path.exists():
        logger.info(f"Timing config not found at {config_path}, using defaults")
        return DEFAULT_TIMING_CONFIG

    with open(config_path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return DEFAULT_TIMING_CONFIG
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path.name} must contain a mapping")

    timing = data.get("timing", {})
    if timing is None:
        timing = {}
    if not isinstance(timing, dict):
        raise ConfigError(f"{config_path.name}: 'timing' must be a mapping")

    overrides: dict[str, float] = {}
    for name, value in timing.items():
        if name not in _TIMING_KEYS:
            logger.warning(f"Unknown timing key in {config_path.name}: {name}")
            continue
        if _valid_threshold(name, value):
            overrides[name] = float(value)

    config = replace(DEFAULT_TIMING_CONFIG, **overrides)
    if config.ambiguity_band_minutes > min(
        config.prep_window_minutes, config.synthesis_window_minutes
    ):
        logger.warning(
            "ambiguity_band_minutes exceeds a decision window; every prep/synthesis "
            "decision will be graded MEDIUM"
        )
    return config


_cached_config: TimingConfig | None = None


def get_timing_config() -> TimingConfig:
    """Get the process-wide timing config, loading it on first use."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_timing_config()
    return _cached_config


def reset_timing_config() -> None:
    """Drop the cached config (tests, config reload)."""
    global _cached_config
    _cached_config = None
