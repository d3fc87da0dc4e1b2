"""
Test configuration - ensures repo root is in sys.path + determinism guards.

This allows tests to import from top-level packages (modeos, api, cli).
Enforces determinism by isolating every test from the repo's timing config,
the API token and the process-wide scheduler.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import modeos.*, api.*, cli
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from modeos.config import TimingConfig, reset_timing_config  # noqa: E402
from tests.fixtures import T0, FakeClock, ManualTicker  # noqa: E402

# =============================================================================
# DETERMINISM GUARD: no ambient config
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """
    Point MODEOS_CONFIG at a missing file so thresholds are the defaults,
    and make sure no API token leaks in from the shell.
    """
    monkeypatch.setenv("MODEOS_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("MODEOS_API_TOKEN", raising=False)
    reset_timing_config()
    yield
    reset_timing_config()


# =============================================================================
# SHARED FIXTURES
# =============================================================================


@pytest.fixture
def now():
    return T0


@pytest.fixture
def timing():
    return TimingConfig()


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def ticker():
    return ManualTicker()
