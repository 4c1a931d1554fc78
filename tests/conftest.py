# tests/conftest.py

from typing import Iterable, Optional

import pytest

from tmd.analysis.config import DetectorConfig
from tmd.analysis.context import DetectionContext, build_context
from tmd.analysis.detector import ModeDetector
from tmd.analysis.state import TrajectoryState
from tmd.analysis.types import (
    GeoTag,
    JourneyContext,
    ModeHistoryEntry,
    Point,
    StationVisit,
    TransportMode,
)

T0 = 1_700_000_000_000
METRES_PER_DEG_LAT = 111194.93


def straight_track(
    n: int,
    speed_kmh: float,
    interval_s: float = 30.0,
    start_ms: int = T0,
    lat0: float = 52.0,
    lng0: float = 13.0,
    with_speed: bool = True,
) -> list[Point]:
    """Northbound fixes spaced to match `speed_kmh`."""
    step = speed_kmh / 3.6 * interval_s / METRES_PER_DEG_LAT
    return [
        Point(
            lat0 + i * step,
            lng0,
            int(start_ms + i * interval_s * 1000),
            speed_kmh if with_speed else None,
        )
        for i in range(n)
    ]


def follow(last: Point, speed_kmh: float, interval_s: float = 30.0, geotag: Optional[GeoTag] = None) -> Point:
    """Next northbound fix after `last`."""
    step = speed_kmh / 3.6 * interval_s / METRES_PER_DEG_LAT
    return Point(
        last.lat + step,
        last.lng,
        int(last.timestamp_ms + interval_s * 1000),
        speed_kmh,
        geotag,
    )


def seeded_state(
    points: Iterable[Point],
    modes: Iterable[TransportMode],
    journey: Optional[JourneyContext] = None,
    last_station: Optional[StationVisit] = None,
) -> TrajectoryState:
    """State with a hand-written history, bypassing the rules."""
    state = TrajectoryState()
    for p, m in zip(points, modes):
        state.points.append(p)
        state.speeds.append(p.speed_kmh)
        state.modes.append(ModeHistoryEntry(m, p.timestamp_ms, p.speed_kmh, p.lat, p.lng, 0.7, "seed"))
        state.last_point = p
        state.last_timestamp_ms = p.timestamp_ms
    state.journey = journey
    state.last_station = last_station
    return state


def ctx_for(
    point: Point,
    state: TrajectoryState,
    geotag: Optional[GeoTag] = None,
    cfg: Optional[DetectorConfig] = None,
) -> DetectionContext:
    return build_context(None, point, None, geotag, state, cfg or DetectorConfig.default())


def station(name: str) -> GeoTag:
    return GeoTag(at_train_station=True, station_name=name)


def airport(name: str) -> GeoTag:
    return GeoTag(at_airport=True, airport_name=name)


@pytest.fixture
def detector() -> ModeDetector:
    return ModeDetector()
