# tmd/analysis/context.py

"""
Per-call detection snapshot.

`build_context` reads the trajectory state and the new fix and freezes
everything a rule may look at into a `DetectionContext`. Rules never see
the mutable state itself.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

from tmd.analysis.config import DetectorConfig
from tmd.analysis.plausibility import is_valid_speed
from tmd.analysis.signals import GpsFrequency, adaptive_window_size, gps_frequency, multi_point_speed
from tmd.analysis.types import (
    NO_GEOTAG,
    GeoTag,
    JourneyContext,
    ModeHistoryEntry,
    Point,
    StationVisit,
    TransportMode,
)
from tmd.utils.geo import haversine, is_valid_coordinate

if TYPE_CHECKING:
    from tmd.analysis.state import TrajectoryState


@dataclass(frozen=True)
class DetectionContext:
    """
    Immutable view of one fix and the trajectory leading up to it.

    Attributes
    ----------
    point, previous
        Current fix and the fix before it (None for the first fix).
    elapsed_s
        Seconds between `previous` and `point`.
    current_speed
        Instantaneous speed of the current fix in km/h; NaN when the
        reported speed is malformed.
    previous_speed
        Last recorded speed, if any.
    rolling_average_speed
        Multi-point smoothed speed over an adaptive window.
    point_history, speed_history
        Bounded windows, oldest first, including the current fix.
    mode_history
        Accepted classifications, oldest first, excluding the current fix.
    geotag
        Normalised reverse-geocode predicates for the current fix.
    gps
        Sampling-frequency classification of the point window.
    journey
        Active train/airplane journey, if any.
    last_station, last_airport
        Most recent station/airport visit before this fix.
    """
    point: Point
    previous: Optional[Point]
    elapsed_s: float
    current_speed: float
    previous_speed: Optional[float]
    rolling_average_speed: float
    point_history: Tuple[Point, ...]
    speed_history: Tuple[float, ...]
    mode_history: Tuple[ModeHistoryEntry, ...]
    geotag: GeoTag
    gps: GpsFrequency
    journey: Optional[JourneyContext]
    last_station: Optional[StationVisit]
    last_airport: Optional[StationVisit]
    cfg: DetectorConfig

    @property
    def timestamp_ms(self) -> int:
        return self.point.timestamp_ms

    @property
    def speed_valid(self) -> bool:
        return is_valid_speed(self.current_speed)

    @property
    def position_valid(self) -> bool:
        return is_valid_coordinate(self.point.lat, self.point.lng)

    @property
    def at_train_station(self) -> bool:
        return self.geotag.at_train_station

    @property
    def at_airport(self) -> bool:
        return self.geotag.at_airport

    @property
    def on_highway(self) -> bool:
        return self.geotag.on_highway

    @property
    def station_name(self) -> Optional[str]:
        return self.geotag.station_name

    @property
    def airport_name(self) -> Optional[str]:
        return self.geotag.airport_name

    @property
    def last_entry(self) -> Optional[ModeHistoryEntry]:
        return self.mode_history[-1] if self.mode_history else None

    @property
    def last_mode(self) -> Optional[TransportMode]:
        return self.mode_history[-1].mode if self.mode_history else None

    def journey_of(self, mode: TransportMode) -> Optional[JourneyContext]:
        if self.journey is not None and self.journey.type == mode:
            return self.journey
        return None

    def has_recent_station(self) -> bool:
        """Station visit within `cfg.recent_station_window_s` of this fix."""
        if self.last_station is None:
            return False
        age_s = (self.timestamp_ms - self.last_station.timestamp_ms) / 1000.0
        return 0 <= age_s <= self.cfg.recent_station_window_s

    def at_other_station(self, name: Optional[str]) -> bool:
        """At a station whose name differs from `name` (an unnamed station never differs)."""
        return (
            self.at_train_station
            and self.station_name is not None
            and self.station_name != name
        )

    def at_other_airport(self, name: Optional[str]) -> bool:
        return (
            self.at_airport
            and self.airport_name is not None
            and self.airport_name != name
        )

    @property
    def coords_history(self) -> list[tuple[float, float]]:
        return [p.coords for p in self.point_history]


def instantaneous_speed(previous: Optional[Point], current: Point, elapsed_s: float) -> float:
    """
    Reported speed when usable; otherwise distance / elapsed time.

    A reported but malformed speed (negative, non-finite) yields NaN so that
    speed-based rules decline rather than guess.
    """
    if current.has_speed:
        return float(current.speed_kmh)
    if current.speed_kmh is not None:
        return math.nan
    if previous is None or elapsed_s <= 0:
        return 0.0
    if not (is_valid_coordinate(*previous.coords) and is_valid_coordinate(*current.coords)):
        return math.nan
    return haversine(previous.coords, current.coords) / elapsed_s * 3.6


def build_context(
    previous: Optional[Point],
    current: Point,
    elapsed_s: Optional[float],
    geotag: Optional[GeoTag],
    state: "TrajectoryState",
    cfg: DetectorConfig,
) -> DetectionContext:
    """
    Assemble the snapshot for `current` from the trajectory state.

    `elapsed_s` falls back to the timestamp difference when not given. The
    explicit `geotag` wins over one attached to the point.
    """
    if previous is None:
        previous = state.last_point
    if elapsed_s is None or not math.isfinite(elapsed_s) or elapsed_s <= 0:
        elapsed_s = (current.timestamp_ms - previous.timestamp_ms) / 1000.0 if previous else 0.0
        elapsed_s = max(0.0, elapsed_s)

    tag = geotag or current.geotag or NO_GEOTAG
    speed = instantaneous_speed(previous, current, elapsed_s)

    points = list(state.points)
    if is_valid_coordinate(current.lat, current.lng):
        points.append(current)
    points = points[-cfg.history_window:]

    speeds = list(state.speeds)
    if is_valid_speed(speed):
        speeds.append(speed)
    speeds = speeds[-cfg.history_window:]

    rolling = multi_point_speed(points, adaptive_window_size(points, cfg), cfg)
    gps = gps_frequency([p.timestamp_ms for p in points], cfg)

    return DetectionContext(
        point=current,
        previous=previous,
        elapsed_s=elapsed_s,
        current_speed=speed,
        previous_speed=state.speeds[-1] if state.speeds else None,
        rolling_average_speed=rolling,
        point_history=tuple(points),
        speed_history=tuple(speeds),
        mode_history=tuple(state.modes),
        geotag=tag,
        gps=gps,
        journey=state.journey,
        last_station=state.last_station,
        last_airport=state.last_airport,
        cfg=cfg,
    )
