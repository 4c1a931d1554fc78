# tmd/analysis/config.py

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from tmd.analysis.errors import ConfigError
from tmd.analysis.plausibility import (
    DEFAULT_MODE_LIMITS,
    DEFAULT_SPEED_BRACKETS,
    ModeLimits,
    SpeedBracket,
)
from tmd.analysis.types import TransportMode


def _default_limits() -> Dict[TransportMode, ModeLimits]:
    return dict(DEFAULT_MODE_LIMITS)


@dataclass
class DetectorConfig:
    """
    Policy knobs for the transport-mode detection engine.

    Speeds are km/h, distances metres, durations seconds. None of these
    are protocol constants; they are tuned against real tracks and may be
    overridden per deployment via `from_file`.

    Attributes
    ----------
    history_window
        Maximum entries kept in the point, speed and mode histories.
    acceptance_threshold
        A rule result is accepted only when its confidence is strictly
        above this value.
    mode_limits
        Per-mode physical limits (see `plausibility.DEFAULT_MODE_LIMITS`).
    speed_brackets
        Ordered half-open speed brackets used for speed-only guesses.
    """
    history_window:               int     = 20
    acceptance_threshold:         float   = 0.5
    fallback_previous_confidence: float   = 0.2
    fallback_unknown_confidence:  float   = 0.1

    # geographic overrides
    highway_min_speed_kmh:        float   = 30.0
    highway_confidence:           float   = 0.95
    station_train_speed_kmh:      float   = 30.0
    station_train_confidence:     float   = 0.9
    station_boarding_confidence:  float   = 0.85
    airport_min_speed_kmh:        float   = 200.0
    airport_confidence:           float   = 0.9

    # train journeys
    train_continue_speed_kmh:     float   = 25.0
    train_end_speed_kmh:          float   = 30.0
    train_max_speed_kmh:          float   = 200.0
    train_slowdown_s:             float   = 300.0
    train_max_duration_s:         float   = 2 * 3600.0
    train_recent_high_speed_kmh:  float   = 80.0
    train_recent_high_speed_count: int    = 3
    recent_station_window_s:      float   = 30 * 60.0

    # retroactive / station-less train segments
    segment_min_distance_m_with_station: float = 3000.0
    segment_min_duration_s_with_station: float = 5 * 60.0
    segment_max_cv_with_station:  float   = 0.2
    segment_min_distance_m:       float   = 5000.0
    segment_min_duration_s:       float   = 8 * 60.0
    segment_max_cv:               float   = 0.15
    unrealistic_min_distance_m:   float   = 5000.0
    unrealistic_min_duration_s:   float   = 10 * 60.0

    # airplane journeys
    airplane_min_speed_kmh:       float   = 200.0
    airplane_slowdown_s:          float   = 3 * 60.0
    airplane_max_duration_s:      float   = 20 * 3600.0

    # physical validation
    acceleration_window_s:        float   = 60.0
    straight_max_variance_deg:    float   = 10.0
    straight_min_points:          int     = 5

    # hysteresis
    hysteresis_min_distance_m:    float   = 200.0
    hysteresis_points:            int     = 3
    hysteresis_dominant_window:   int     = 5

    # continuity
    high_speed_continuity_kmh:    float   = 80.0
    similarity_max_delta_kmh:     float   = 20.0

    # speed-variance patterns
    pattern_min_samples:          int     = 10
    pattern_min_distance_m:       float   = 3000.0
    pattern_min_duration_s:       float   = 5 * 60.0
    train_pattern_min_speed_kmh:  float   = 80.0
    train_pattern_max_speed_kmh:  float   = 120.0
    car_pattern_min_speed_kmh:    float   = 60.0
    car_pattern_max_speed_kmh:    float   = 130.0
    car_pattern_min_cv:           float   = 0.35
    train_like_max_cv:            float   = 0.15
    train_like_min_mean_kmh:      float   = 80.0
    car_like_min_cv:              float   = 0.25
    sustained_speed_kmh:          float   = 90.0
    sustained_duration_s:         float   = 10 * 60.0
    without_station_min_speed_kmh: float  = 60.0

    # multi-signal combination
    multi_signal_min_speed_kmh:   float   = 40.0
    multi_signal_max_speed_kmh:   float   = 130.0
    multi_signal_min_signal_confidence: float = 0.6
    multi_signal_min_bracket_confidence: float = 0.5
    multi_signal_per_signal_bonus: float  = 0.05
    multi_signal_max_bonus:       float   = 0.15
    multi_signal_max_confidence:  float   = 0.95
    multi_signal_min_confidence:  float   = 0.75

    # stop pattern
    stop_radius_m:                float   = 50.0
    stop_min_duration_s:          float   = 20.0
    stop_pattern_min_distance_m:  float   = 2000.0
    stop_pattern_min_confidence:  float   = 0.65

    # GPS sampling frequency
    active_interval_s:            float   = 10.0
    background_interval_s:        float   = 30.0
    strong_background_interval_s: float   = 60.0

    # multi-point speed smoothing
    speed_window_min:             int     = 3
    speed_window_default:         int     = 5
    speed_window_max:             int     = 10
    speed_weight_decay:           float   = 0.8
    speed_outlier_sigma:          float   = 2.0
    speed_min_segment_m:          float   = 10.0
    speed_max_kmh:                float   = 500.0

    mode_limits: Dict[TransportMode, ModeLimits] = field(default_factory=_default_limits)
    speed_brackets: tuple[SpeedBracket, ...] = DEFAULT_SPEED_BRACKETS

    @classmethod
    def default(cls) -> "DetectorConfig":
        """Preset used in production."""
        return cls()

    @classmethod
    def strict(cls) -> "DetectorConfig":
        """Preset demanding long, steady segments before calling anything a train."""
        return cls(
            segment_min_distance_m_with_station=5000.0,
            segment_min_duration_s_with_station=8 * 60.0,
            segment_max_cv_with_station=0.15,
            pattern_min_distance_m=5000.0,
            pattern_min_duration_s=8 * 60.0,
        )

    def with_overrides(self, overrides: Mapping[str, Any]) -> "DetectorConfig":
        """
        Copy of this config with the given fields replaced.

        `mode_limits` may be given as {mode: {min_speed_kmh, max_speed_kmh,
        max_acceleration_kmh_per_s}} and is merged over the current table.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known - {"speed_brackets"})
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        if "speed_brackets" in overrides:
            raise ConfigError("speed_brackets cannot be overridden from a file")

        values: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key == "mode_limits":
                values[key] = self._merge_limits(value)
                continue
            current = getattr(self, key)
            try:
                values[key] = type(current)(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid value for {key}: {value!r}") from exc
        return replace(self, **values)

    def _merge_limits(self, raw: Any) -> Dict[TransportMode, ModeLimits]:
        if not isinstance(raw, Mapping):
            raise ConfigError("mode_limits must be a mapping of mode -> limits")
        merged = dict(self.mode_limits)
        for mode_name, entry in raw.items():
            try:
                mode = TransportMode(mode_name)
                merged[mode] = ModeLimits(
                    float(entry["min_speed_kmh"]),
                    float(entry["max_speed_kmh"]),
                    float(entry["max_acceleration_kmh_per_s"]),
                )
            except (ValueError, KeyError, TypeError) as exc:
                raise ConfigError(f"Invalid mode_limits entry for {mode_name!r}") from exc
        return merged

    @classmethod
    def from_file(cls, path: str | Path, base: "DetectorConfig | None" = None) -> "DetectorConfig":
        """
        Load overrides from a JSON object file on top of `base` (default preset).
        """
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        return (base or cls.default()).with_overrides(raw)
