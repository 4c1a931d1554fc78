"""
Pydantic schemas validating points at the CLI/HTTP boundary.
"""

import math
from typing import Any, Optional

from pydantic import BaseModel, Field

from tmd.analysis.geotag import normalize_geocode
from tmd.analysis.types import DetectionResult, Point


class PointIn(BaseModel):
    """
    One GPS fix as supplied by a caller.
    """
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(ge=-180, le=180, allow_inf_nan=False)
    timestamp_ms: int = Field(ge=0)
    speed_kmh: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    geocode: Optional[Any] = None  # raw reverse-geocode, normalised on conversion

    def to_point(self) -> Point:
        geotag = normalize_geocode(self.geocode) if self.geocode is not None else None
        return Point(self.lat, self.lng, self.timestamp_ms, self.speed_kmh, geotag)


class ClassifiedPoint(BaseModel):
    """
    One fix with its transport-mode classification.
    """
    lat: float
    lng: float
    timestamp_ms: int
    speed_kmh: Optional[float]
    mode: str
    confidence: float
    reason: str
    code: str

    @classmethod
    def from_result(cls, point: Point, speed_kmh: float, result: DetectionResult) -> "ClassifiedPoint":
        return cls(
            lat=point.lat,
            lng=point.lng,
            timestamp_ms=point.timestamp_ms,
            speed_kmh=round(speed_kmh, 2) if math.isfinite(speed_kmh) else None,
            mode=result.mode.value,
            confidence=round(result.confidence, 4),
            reason=result.reason,
            code=result.code.value,
        )


class ClassifyRequest(BaseModel):
    """
    A whole track to classify from a fresh state.
    """
    points: list[PointIn]
    strict: bool = False


class ClassifyResponse(BaseModel):
    points: list[ClassifiedPoint]
    count: int
    modes: dict[str, int]
