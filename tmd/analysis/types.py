# tmd/analysis/types.py

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from tmd.analysis.reasons import Reason


class TransportMode(str, Enum):
    """
    Transport modes the engine can assign to a fix.
    """
    STATIONARY = "stationary"
    WALKING = "walking"
    CYCLING = "cycling"
    CAR = "car"
    TRAIN = "train"
    AIRPLANE = "airplane"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


# modes tracked by the journey state machine
JOURNEY_MODES = (TransportMode.TRAIN, TransportMode.AIRPLANE)


@dataclass(frozen=True)
class GeoTag:
    """
    Normalised reverse-geocode predicates for a single fix.

    Parameters
    ----------
    at_train_station : bool
        Fix lies on a railway station / platform.
    at_airport : bool
        Fix lies on an aerodrome.
    on_highway : bool
        Fix lies on a motorway-class road.
    station_name : str, optional
        Display name of the station, when known.
    airport_name : str, optional
        Display name of the airport, when known.
    """
    at_train_station: bool = False
    at_airport: bool = False
    on_highway: bool = False
    station_name: Optional[str] = None
    airport_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.at_train_station or self.at_airport or self.on_highway)


NO_GEOTAG = GeoTag()


@dataclass(frozen=True)
class Point:
    """
    Single GPS fix.

    Parameters
    ----------
    lat : float
        Latitude in decimal degrees.
    lng : float
        Longitude in decimal degrees.
    timestamp_ms : int
        Fix time, milliseconds since epoch.
    speed_kmh : float, optional
        Reported or derived ground speed.
    geotag : GeoTag, optional
        Normalised reverse-geocode tag.
    """
    lat: float
    lng: float
    timestamp_ms: int
    speed_kmh: Optional[float] = None
    geotag: Optional[GeoTag] = None

    @property
    def coords(self) -> tuple[float, float]:
        return (self.lat, self.lng)

    @property
    def has_speed(self) -> bool:
        return self.speed_kmh is not None and math.isfinite(self.speed_kmh) and self.speed_kmh >= 0


@dataclass(frozen=True)
class ModeHistoryEntry:
    """
    One accepted classification, kept for continuity and re-scoring.
    """
    mode: TransportMode
    timestamp_ms: int
    speed_kmh: float
    lat: float
    lng: float
    confidence: float
    reason: str


@dataclass(frozen=True)
class StationVisit:
    """
    Most recent time the trajectory touched a station or airport.
    """
    name: Optional[str]
    timestamp_ms: int
    lat: float
    lng: float


@dataclass(frozen=True)
class JourneyContext:
    """
    An in-progress train or airplane journey.

    `type` never changes for the life of a journey; the state machine
    replaces the object rather than editing it.
    """
    type: TransportMode
    start_time_ms: int
    start_station: Optional[str] = None
    start_airport: Optional[str] = None
    end_station: Optional[str] = None
    end_airport: Optional[str] = None
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    total_distance_m: float = 0.0
    average_speed_kmh: float = 0.0
    last_timestamp_ms: Optional[int] = None

    def elapsed_ms(self, now_ms: int) -> int:
        return max(0, now_ms - self.start_time_ms)


def clamp_confidence(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class DetectionResult:
    """
    Output of a rule or of the engine as a whole.

    Parameters
    ----------
    mode : TransportMode
        Assigned transport mode.
    confidence : float
        Certainty in [0, 1]; out-of-range values are clamped.
    reason : str
        Human-readable justification.
    code : Reason
        Stable reason code for localisation.
    metadata : dict
        Rule-specific diagnostics.
    """
    mode: TransportMode
    confidence: float
    reason: str
    code: Reason = Reason.UNKNOWN
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", TransportMode(self.mode))
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
