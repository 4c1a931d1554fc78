import json

import pytest

from tmd.analysis.config import DetectorConfig
from tmd.analysis.errors import ConfigError
from tmd.analysis.plausibility import ModeLimits
from tmd.analysis.types import TransportMode


def test_default_values():
    cfg = DetectorConfig.default()
    assert cfg.history_window == 20
    assert cfg.acceptance_threshold == 0.5
    assert cfg.segment_min_distance_m == 5000.0
    assert cfg.mode_limits[TransportMode.TRAIN] == ModeLimits(30.0, 350.0, 6.0)


def test_strict_preset_tightens_segments():
    strict, default = DetectorConfig.strict(), DetectorConfig.default()
    assert strict.segment_min_distance_m_with_station > default.segment_min_distance_m_with_station
    assert strict.segment_max_cv_with_station == 0.15
    assert strict.pattern_min_duration_s == 8 * 60.0


def test_with_overrides_coerces_types():
    cfg = DetectorConfig.default().with_overrides({"history_window": "30", "highway_confidence": 1})
    assert cfg.history_window == 30
    assert isinstance(cfg.highway_confidence, float)


def test_with_overrides_rejects_unknown_keys():
    with pytest.raises(ConfigError, match="bogus"):
        DetectorConfig.default().with_overrides({"bogus": 1})


def test_with_overrides_rejects_bad_values():
    with pytest.raises(ConfigError):
        DetectorConfig.default().with_overrides({"history_window": "many"})
    with pytest.raises(ConfigError):
        DetectorConfig.default().with_overrides({"speed_brackets": []})


def test_mode_limits_are_merged():
    cfg = DetectorConfig.default().with_overrides({
        "mode_limits": {
            "car": {"min_speed_kmh": 5, "max_speed_kmh": 250, "max_acceleration_kmh_per_s": 20},
        },
    })
    assert cfg.mode_limits[TransportMode.CAR].max_speed_kmh == 250
    assert cfg.mode_limits[TransportMode.TRAIN].max_speed_kmh == 350
    # the default table is untouched
    assert DetectorConfig.default().mode_limits[TransportMode.CAR].max_speed_kmh == 180


def test_mode_limits_bad_entry():
    with pytest.raises(ConfigError):
        DetectorConfig.default().with_overrides({"mode_limits": {"car": {"max_speed_kmh": 1}}})
    with pytest.raises(ConfigError):
        DetectorConfig.default().with_overrides({"mode_limits": {"hovercraft": {}}})


def test_from_file(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"highway_min_speed_kmh": 50}))
    cfg = DetectorConfig.from_file(path)
    assert cfg.highway_min_speed_kmh == 50.0

    on_strict = DetectorConfig.from_file(path, base=DetectorConfig.strict())
    assert on_strict.segment_max_cv_with_station == 0.15


def test_from_file_errors(tmp_path):
    with pytest.raises(ConfigError):
        DetectorConfig.from_file(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError):
        DetectorConfig.from_file(bad)

    arr = tmp_path / "arr.json"
    arr.write_text("[1, 2]")
    with pytest.raises(ConfigError, match="JSON object"):
        DetectorConfig.from_file(arr)
