# tmd/utils/geo.py

"""
Geospatial utility functions.
"""

import math
from typing import Sequence, Tuple

EARTH_RADIUS_M = 6371000.0


def haversine(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """
    Compute the great-circle distance between two points on the Earth.

    Parameters
    ----------
    a
        (latitude, longitude) of point A, in decimal degrees.
    b
        (latitude, longitude) of point B, in decimal degrees.

    Returns
    -------
    float
        Distance between A and B in metres.
    """
    lat1, lon1 = a
    lat2, lon2 = b
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lam = math.radians(lon2 - lon1)
    h = math.sin(d_phi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(d_lam/2)**2
    # rounding can push h a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def bearing(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """
    Initial compass bearing from A to B.

    Returns
    -------
    float
        Bearing in degrees, normalised to [0, 360).
    """
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    d_lam = lon2 - lon1
    y = math.sin(d_lam) * math.cos(lat2)
    x = math.cos(lat1)*math.sin(lat2) - math.sin(lat1)*math.cos(lat2)*math.cos(d_lam)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_variance(points: Sequence[Tuple[float, float]]) -> float:
    """
    Circular standard deviation (degrees) of the bearings between
    consecutive points.

    Uses the mean resultant length R of the unit bearing vectors:
    sigma = sqrt(-2 ln R). Fewer than three points carry no turning
    information and yield 0.
    """
    if len(points) < 3:
        return 0.0

    rads = [math.radians(bearing(p, q)) for p, q in zip(points, points[1:])]
    mean_sin = sum(math.sin(r) for r in rads) / len(rads)
    mean_cos = sum(math.cos(r) for r in rads) / len(rads)
    r = math.hypot(mean_sin, mean_cos)
    if r >= 1.0:
        return 0.0
    if r <= 0.0:
        # bearings cancel out completely
        return 180.0
    return math.degrees(math.sqrt(-2.0 * math.log(r)))


def is_straight_trajectory(
    points: Sequence[Tuple[float, float]],
    max_variance_deg: float = 10.0,
    min_points: int = 5,
) -> bool:
    """
    True when the path keeps a near-constant heading (rail-like).
    """
    if len(points) < min_points:
        return False
    return bearing_variance(points) < max_variance_deg


def path_length(points: Sequence[Tuple[float, float]]) -> float:
    """
    Sum of the great-circle legs along a polyline, in metres.
    """
    return sum(haversine(p, q) for p, q in zip(points, points[1:]))


def centroid(points: Sequence[Tuple[float, float]]) -> Tuple[float, float]:
    """
    Arithmetic mean of (lat, lon) pairs; adequate over the few hundred
    metres a stop cluster spans.
    """
    n = len(points)
    return (sum(p[0] for p in points) / n, sum(p[1] for p in points) / n)


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """
    Finite latitude/longitude within the WGS84 ranges.
    """
    return (
        math.isfinite(lat) and math.isfinite(lon)
        and -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
    )
