"""
Signal extraction over a trajectory's recent history.

Every function here is pure: it reads point/speed windows and returns a
small summary the rules can score. Nothing raises for short or malformed
input; too little data yields a neutral summary instead.

- speed variance (mean, std-dev, CV)
- GPS sampling frequency (active navigation vs. background tracking)
- stop pattern (dwell clusters, stops per km)
- speed-transition smoothness
- multi-point smoothed speed with an adaptive window
- sustained-speed check
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from tmd.analysis.config import DetectorConfig
from tmd.analysis.types import ModeHistoryEntry, Point, TransportMode
from tmd.utils.geo import centroid, haversine, path_length

_DEFAULT_CFG = DetectorConfig()

ACTIVE_NAVIGATION = "active_navigation"
BACKGROUND_TRACKING = "background_tracking"
MIXED = "mixed"

TRAIN_LIKE = "train_like"
CAR_CITY = "car_city"
CAR_HIGHWAY = "car_highway"
WALKING_LIKE = "walking"
UNKNOWN_PATTERN = "unknown"

SMOOTH = "smooth"
MODERATE = "moderate"
ERRATIC = "erratic"


def _finite(values: Iterable[Optional[float]]) -> List[float]:
    return [v for v in values if v is not None and math.isfinite(v)]


# -----------------------------------------------------------------------------
# Speed variance

@dataclass(frozen=True)
class SpeedVariance:
    mean: float = 0.0
    std_dev: float = 0.0
    cv: float = 0.0
    min: float = 0.0
    max: float = 0.0
    range: float = 0.0


def speed_variance(speeds: Iterable[Optional[float]]) -> SpeedVariance:
    """
    Population statistics of a speed series.

    Non-finite entries are ignored. The coefficient of variation is
    std_dev / mean, and 0 when the mean is 0.
    """
    values = _finite(speeds)
    if not values:
        return SpeedVariance()
    n = len(values)
    mean = sum(values) / n
    std_dev = math.sqrt(sum((v - mean) ** 2 for v in values) / n)
    lo, hi = min(values), max(values)
    return SpeedVariance(
        mean=mean,
        std_dev=std_dev,
        cv=std_dev / mean if mean > 0 else 0.0,
        min=lo,
        max=hi,
        range=hi - lo,
    )


def has_train_like_speed(speeds: Sequence[float], cfg: DetectorConfig = _DEFAULT_CFG) -> bool:
    if len(speeds) < 5:
        return False
    stats = speed_variance(speeds)
    return stats.cv < cfg.train_like_max_cv and stats.mean >= cfg.train_like_min_mean_kmh


def has_car_like_speed(speeds: Sequence[float], cfg: DetectorConfig = _DEFAULT_CFG) -> bool:
    if len(speeds) < 5:
        return False
    return speed_variance(speeds).cv > cfg.car_like_min_cv


# -----------------------------------------------------------------------------
# GPS sampling frequency

def _neutral_modifiers() -> Dict[TransportMode, float]:
    return {m: 0.0 for m in TransportMode if m is not TransportMode.UNKNOWN}


@dataclass(frozen=True)
class GpsFrequency:
    """
    How densely the device is sampling, and what that says about the mode.

    Attributes
    ----------
    pattern
        One of `active_navigation`, `background_tracking`, `mixed`.
    mean_interval_s
        Mean gap between consecutive fixes.
    interval_cv
        Coefficient of variation of the gaps.
    likely_mode
        CAR for active navigation, UNKNOWN otherwise.
    modifiers
        Additive confidence adjustment per mode, in [-0.3, 0.3].
    """
    pattern: str = MIXED
    mean_interval_s: float = 0.0
    interval_cv: float = 0.0
    likely_mode: TransportMode = TransportMode.UNKNOWN
    modifiers: Dict[TransportMode, float] = field(default_factory=_neutral_modifiers)

    def modifier(self, mode: TransportMode) -> float:
        return self.modifiers.get(mode, 0.0)


def gps_frequency(timestamps_ms: Sequence[int], cfg: DetectorConfig = _DEFAULT_CFG) -> GpsFrequency:
    """
    Classify the sampling interval of a series of fix timestamps.

    Fewer than three timestamps give a neutral `mixed` result.
    """
    if len(timestamps_ms) < 3:
        return GpsFrequency()

    intervals = [(b - a) / 1000.0 for a, b in zip(timestamps_ms, timestamps_ms[1:])]
    mean = sum(intervals) / len(intervals)
    if mean <= 0:
        return GpsFrequency()
    spread = math.sqrt(sum((i - mean) ** 2 for i in intervals) / len(intervals))

    mods = _neutral_modifiers()
    M = TransportMode
    if mean < cfg.active_interval_s:
        mods.update({M.CAR: 0.20, M.TRAIN: -0.15, M.WALKING: -0.10, M.CYCLING: -0.05})
        return GpsFrequency(ACTIVE_NAVIGATION, mean, spread / mean, M.CAR, mods)
    if mean > cfg.strong_background_interval_s:
        mods.update({M.CAR: -0.30, M.TRAIN: 0.15, M.WALKING: 0.10, M.CYCLING: 0.05, M.AIRPLANE: 0.05})
        return GpsFrequency(BACKGROUND_TRACKING, mean, spread / mean, M.UNKNOWN, mods)
    if mean > cfg.background_interval_s:
        mods.update({M.CAR: -0.20, M.TRAIN: 0.10, M.WALKING: 0.05})
        return GpsFrequency(BACKGROUND_TRACKING, mean, spread / mean, M.UNKNOWN, mods)
    return GpsFrequency(MIXED, mean, spread / mean, M.UNKNOWN, mods)


# -----------------------------------------------------------------------------
# Stop pattern

@dataclass(frozen=True)
class StopPattern:
    stop_count: int = 0
    stops_per_km: float = 0.0
    mean_stop_duration_s: float = 0.0
    stop_duration_cv: float = 0.0
    longest_movement_s: float = 0.0
    distance_m: float = 0.0
    pattern: str = UNKNOWN_PATTERN
    confidence: float = 0.0
    likely_mode: TransportMode = TransportMode.UNKNOWN


def _stop_clusters(points: Sequence[Point], radius_m: float) -> List[tuple[int, int]]:
    """
    Split the series into runs of consecutive points that stay within
    `radius_m` of the run's running centroid. Returns (start, end) index
    pairs, inclusive.
    """
    runs: List[tuple[int, int]] = []
    start = 0
    members = [points[0].coords]
    for i in range(1, len(points)):
        if haversine(centroid(members), points[i].coords) <= radius_m:
            members.append(points[i].coords)
            continue
        runs.append((start, i - 1))
        start = i
        members = [points[i].coords]
    runs.append((start, len(points) - 1))
    return runs


def stop_pattern(points: Sequence[Point], cfg: DetectorConfig = _DEFAULT_CFG) -> StopPattern:
    """
    Detect dwell periods and classify the stop rhythm.

    A stop is a cluster of consecutive fixes within `cfg.stop_radius_m` of
    their centroid lasting at least `cfg.stop_min_duration_s`.

    Classification (first match wins):
    - train_like: < 0.5 stops/km, mean dwell 60-300 s, dwell CV < 0.4
    - car_city: > 3 stops/km with irregular dwell (CV > 0.5)
    - car_highway: < 1 stop/km with 10-60 s dwell
    - walking: > 5 stops/km
    - car_city (weak): 1-3 stops/km
    """
    if len(points) < 5:
        return StopPattern()

    stops: List[tuple[int, int, float]] = []
    for start, end in _stop_clusters(points, cfg.stop_radius_m):
        if end == start:
            continue
        dwell = (points[end].timestamp_ms - points[start].timestamp_ms) / 1000.0
        if dwell >= cfg.stop_min_duration_s:
            stops.append((start, end, dwell))

    distance_m = path_length([p.coords for p in points])
    km = distance_m / 1000.0
    count = len(stops)
    per_km = count / km if km > 0 else 0.0
    durations = [d for _, _, d in stops]
    mean_dwell = sum(durations) / count if count else 0.0
    dwell_cv = 0.0
    if count > 1 and mean_dwell > 0:
        dwell_cv = math.sqrt(sum((d - mean_dwell) ** 2 for d in durations) / count) / mean_dwell

    # longest stretch between stops
    longest = 0.0
    moving_from = points[0].timestamp_ms
    for start, end, _ in stops:
        longest = max(longest, (points[start].timestamp_ms - moving_from) / 1000.0)
        moving_from = points[end].timestamp_ms
    longest = max(longest, (points[-1].timestamp_ms - moving_from) / 1000.0)

    pattern, confidence, likely = UNKNOWN_PATTERN, 0.0, TransportMode.UNKNOWN
    if per_km < 0.5 and 60 < mean_dwell < 300 and dwell_cv < 0.4:
        pattern, confidence, likely = TRAIN_LIKE, 0.80, TransportMode.TRAIN
    elif per_km > 3 and dwell_cv > 0.5:
        pattern, confidence, likely = CAR_CITY, 0.85, TransportMode.CAR
    elif per_km < 1 and 10 <= mean_dwell < 60:
        pattern, confidence, likely = CAR_HIGHWAY, 0.75, TransportMode.CAR
    elif per_km > 5:
        pattern, confidence, likely = WALKING_LIKE, 0.70, TransportMode.WALKING
    elif 1 <= per_km <= 3:
        pattern, confidence, likely = CAR_CITY, 0.65, TransportMode.CAR

    return StopPattern(
        stop_count=count,
        stops_per_km=per_km,
        mean_stop_duration_s=mean_dwell,
        stop_duration_cv=dwell_cv,
        longest_movement_s=longest,
        distance_m=distance_m,
        pattern=pattern,
        confidence=confidence,
        likely_mode=likely,
    )


# -----------------------------------------------------------------------------
# Speed-transition smoothness

@dataclass(frozen=True)
class SpeedTransitions:
    mean_change: float = 0.0
    max_change: float = 0.0
    smoothness: str = MODERATE
    likely_mode: TransportMode = TransportMode.UNKNOWN


def speed_transitions(speeds: Sequence[float]) -> SpeedTransitions:
    """
    Mean and max absolute change between consecutive speeds.

    Trains accelerate gradually (smooth); cars in traffic do not (erratic).
    """
    values = _finite(speeds)
    if len(values) < 3:
        return SpeedTransitions()
    changes = [abs(b - a) for a, b in zip(values, values[1:])]
    mean_change = sum(changes) / len(changes)
    max_change = max(changes)
    if mean_change < 10 and max_change < 20:
        return SpeedTransitions(mean_change, max_change, SMOOTH, TransportMode.TRAIN)
    if mean_change > 20 or max_change > 40:
        return SpeedTransitions(mean_change, max_change, ERRATIC, TransportMode.CAR)
    return SpeedTransitions(mean_change, max_change, MODERATE, TransportMode.UNKNOWN)


# -----------------------------------------------------------------------------
# Multi-point speed

def adaptive_window_size(points: Sequence[Point], cfg: DetectorConfig = _DEFAULT_CFG) -> int:
    """
    Wider smoothing windows for sparse/noisy fixes: mean leg > 100 m -> 7,
    > 50 m -> 5, otherwise 3. Always within the configured bounds.
    """
    if len(points) < 3:
        return cfg.speed_window_min
    legs = [haversine(a.coords, b.coords) for a, b in zip(points, points[1:])]
    mean_leg = sum(legs) / len(legs)
    if mean_leg > 100:
        size = 7
    elif mean_leg > 50:
        size = 5
    else:
        size = 3
    return max(cfg.speed_window_min, min(size, cfg.speed_window_max))


def _weighted_recent_mean(values: Sequence[float], decay: float) -> float:
    total = weights = 0.0
    n = len(values)
    for i, v in enumerate(values):
        w = decay ** (n - 1 - i)
        total += v * w
        weights += w
    return total / weights if weights > 0 else 0.0


def multi_point_speed(
    points: Sequence[Point],
    window: Optional[int] = None,
    cfg: DetectorConfig = _DEFAULT_CFG,
) -> float:
    """
    Noise-reduced speed over the most recent points, in km/h.

    Reported speeds are preferred when enough fixes carry one. Otherwise
    speeds are derived from consecutive legs longer than
    `cfg.speed_min_segment_m`, legs faster than mean + k*sigma are
    dropped, and the rest averaged with exponentially decaying weights
    (newest weighs most). The result is capped at `cfg.speed_max_kmh`.
    """
    if window is None:
        window = cfg.speed_window_default
    window = max(cfg.speed_window_min, min(window, cfg.speed_window_max))
    cap = cfg.speed_max_kmh

    reported = [p.speed_kmh for p in points if p.has_speed and p.speed_kmh > 0]
    if points and len(reported) >= min(3, len(points)):
        recent = [s for s in reported[-window:] if s < cap]
        if not recent:
            return 0.0
        return min(_weighted_recent_mean(recent, cfg.speed_weight_decay), cap)

    if len(points) < 2:
        return 0.0

    recent_pts = points[-window:] if len(points) > 2 else points
    legs: List[float] = []
    for a, b in zip(recent_pts, recent_pts[1:]):
        dt = (b.timestamp_ms - a.timestamp_ms) / 1000.0
        dist = haversine(a.coords, b.coords)
        if dt > 0 and dist > cfg.speed_min_segment_m:
            legs.append(dist / dt * 3.6)
    if not legs:
        return 0.0

    stats = speed_variance(legs)
    if len(legs) >= 3 and stats.std_dev > 1e-6:
        threshold = stats.mean + cfg.speed_outlier_sigma * stats.std_dev
        legs = [s for s in legs if 0 <= s <= threshold]

    return min(_weighted_recent_mean(legs, cfg.speed_weight_decay), cap)


# -----------------------------------------------------------------------------
# Sustained speed

def has_sustained_speed(
    history: Sequence[ModeHistoryEntry],
    min_speed_kmh: float,
    min_duration_ms: int,
    now_ms: int,
) -> bool:
    """
    True when every history entry in the last `min_duration_ms` before
    `now_ms` was at or above `min_speed_kmh`, and the history reaches back
    at least that far.
    """
    if len(history) < 2:
        return False
    cutoff = now_ms - min_duration_ms
    if history[0].timestamp_ms > cutoff:
        return False
    recent = [h for h in history if h.timestamp_ms >= cutoff]
    if not recent:
        return False
    return all(h.speed_kmh >= min_speed_kmh for h in recent)
