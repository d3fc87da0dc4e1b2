"""Tests for timing config loading and the process-wide cache."""

import pytest
import yaml

from modeos import paths
from modeos.config import (
    DEFAULT_TIMING_CONFIG,
    TimingConfig,
    get_timing_config,
    load_timing_config,
    reset_timing_config,
)
from modeos.errors import ConfigError


def write(tmp_path, text):
    path = tmp_path / "mode_engine.yaml"
    path.write_text(text)
    return path


class TestLoadTimingConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_timing_config(str(tmp_path / "nope.yaml")) == TimingConfig()

    def test_empty_file_gives_defaults(self, tmp_path):
        assert load_timing_config(str(write(tmp_path, ""))) is DEFAULT_TIMING_CONFIG

    def test_overrides(self, tmp_path):
        path = write(tmp_path, "timing:\n  prep_window_minutes: 45\n  ambiguity_band_minutes: 0\n")
        config = load_timing_config(str(path))
        assert config.prep_window_minutes == 45
        assert config.ambiguity_band_minutes == 0
        assert config.synthesis_window_minutes == 30

    @pytest.mark.parametrize(
        "line",
        [
            "prep_window_minutes: -5",
            "prep_window_minutes: soon",
            "prep_window_minutes: true",
            "prep_window_minutes: 0",
            "prep_window_minutes: .inf",
        ],
    )
    def test_invalid_values_fall_back(self, tmp_path, line, caplog):
        config = load_timing_config(str(write(tmp_path, f"timing:\n  {line}\n")))
        assert config.prep_window_minutes == 30
        assert any("Ignoring" in r.getMessage() for r in caplog.records)

    def test_unknown_keys_are_ignored(self, tmp_path, caplog):
        config = load_timing_config(str(write(tmp_path, "timing:\n  focus_minutes: 10\n")))
        assert config == TimingConfig()
        assert any("focus_minutes" in r.getMessage() for r in caplog.records)

    def test_oversized_band_warns(self, tmp_path, caplog):
        load_timing_config(str(write(tmp_path, "timing:\n  ambiguity_band_minutes: 40\n")))
        assert any("exceeds a decision window" in r.getMessage() for r in caplog.records)

    def test_non_mapping_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_timing_config(str(write(tmp_path, "- 1\n- 2\n")))

    def test_non_mapping_timing_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="'timing' must be a mapping"):
            load_timing_config(str(write(tmp_path, "timing: 30\n")))

    def test_invalid_yaml_raises(self, tmp_path):
        with pytest.raises(yaml.YAMLError):
            load_timing_config(str(write(tmp_path, "timing: [unclosed\n")))

    def test_shipped_file_matches_defaults(self):
        assert load_timing_config(str(paths.config_dir() / "mode_engine.yaml")) == TimingConfig()


class TestConfigCache:
    def test_env_override_and_cache(self, tmp_path, monkeypatch):
        path = write(tmp_path, "timing:\n  prep_window_minutes: 20\n")
        monkeypatch.setenv("MODEOS_CONFIG", str(path))
        reset_timing_config()

        first = get_timing_config()
        assert first.prep_window_minutes == 20

        path.write_text("timing:\n  prep_window_minutes: 10\n")
        assert get_timing_config() is first

        reset_timing_config()
        assert get_timing_config().prep_window_minutes == 10

    def test_to_dict(self):
        data = TimingConfig().to_dict()
        assert data["prep_window_minutes"] == 30
        assert data["critical_stale_seconds"] == 1800
        assert len(data) == 9
