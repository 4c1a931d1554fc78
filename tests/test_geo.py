import math

import pytest

from tmd.utils import geo


def test_haversine_one_degree_latitude():
    assert geo.haversine((0.0, 0.0), (1.0, 0.0)) == pytest.approx(111195, rel=1e-4)


def test_haversine_same_point_is_zero():
    assert geo.haversine((52.5, 13.4), (52.5, 13.4)) == 0.0


def test_bearing_cardinal_directions():
    assert geo.bearing((0.0, 0.0), (1.0, 0.0)) == pytest.approx(0.0)
    assert geo.bearing((0.0, 0.0), (0.0, 1.0)) == pytest.approx(90.0)
    assert geo.bearing((0.0, 0.0), (-1.0, 0.0)) == pytest.approx(180.0)
    assert geo.bearing((0.0, 0.0), (0.0, -1.0)) == pytest.approx(270.0)


def test_bearing_variance_straight_line_is_zero():
    line = [(52.0 + i * 0.01, 13.0) for i in range(6)]
    assert geo.bearing_variance(line) == pytest.approx(0.0, abs=1e-6)


def test_bearing_variance_needs_three_points():
    assert geo.bearing_variance([(0.0, 0.0), (1.0, 1.0)]) == 0.0


def test_straight_trajectory():
    line = [(52.0 + i * 0.01, 13.0) for i in range(6)]
    zigzag = [(52.0 + i * 0.01, 13.0 + (0.01 if i % 2 else 0.0)) for i in range(6)]
    assert geo.is_straight_trajectory(line)
    assert not geo.is_straight_trajectory(zigzag)
    # too few points to judge
    assert not geo.is_straight_trajectory(line[:4])


def test_path_length_sums_legs():
    pts = [(0.0, 0.0), (1.0, 0.0), (2.0, 0.0)]
    assert geo.path_length(pts) == pytest.approx(2 * geo.haversine(pts[0], pts[1]))
    assert geo.path_length(pts[:1]) == 0.0


def test_centroid():
    assert geo.centroid([(0.0, 0.0), (2.0, 4.0)]) == (1.0, 2.0)


@pytest.mark.parametrize("lat, lng, ok", [
    (0.0, 0.0, True),
    (90.0, 180.0, True),
    (91.0, 0.0, False),
    (0.0, -181.0, False),
    (math.nan, 0.0, False),
    (0.0, math.inf, False),
])
def test_is_valid_coordinate(lat, lng, ok):
    assert geo.is_valid_coordinate(lat, lng) is ok
