from __future__ import annotations

import os
from pathlib import Path

APP_ENV_CONFIG = "MODEOS_CONFIG"


def project_root() -> Path:
    """
    Repository/project root directory.
    Contains modeos/, api/, config/, tests/.
    """
    return Path(__file__).parent.parent.resolve()


def config_dir() -> Path:
    return project_root() / "config"


def timing_config_path() -> Path:
    """
    Canonical path of the timing thresholds file.

    Resolution order:
    1. MODEOS_CONFIG env var (explicit override)
    2. <project root>/config/mode_engine.yaml (default)
    """
    if os.environ.get(APP_ENV_CONFIG):
        return Path(os.environ[APP_ENV_CONFIG]).expanduser().resolve()
    return config_dir() / "mode_engine.yaml"
