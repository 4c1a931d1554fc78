import math

import pytest

from tmd.analysis.context import instantaneous_speed
from tmd.analysis.reasons import REASON_LABELS, Reason, reason_label
from tmd.analysis.state import TrajectoryState
from tmd.analysis.types import DetectionResult, GeoTag, Point, StationVisit, TransportMode

from conftest import T0, ctx_for, seeded_state, station, straight_track


def test_detection_result_clamps_and_coerces():
    result = DetectionResult("car", 1.7, "x")
    assert result.mode is TransportMode.CAR
    assert result.confidence == 1.0
    assert DetectionResult(TransportMode.CAR, -3, "x").confidence == 0.0
    assert DetectionResult(TransportMode.CAR, math.nan, "x").confidence == 0.0


def test_every_reason_has_a_label():
    assert set(REASON_LABELS) == set(Reason)
    assert reason_label("HIGHWAY_OR_MOTORWAY") == REASON_LABELS[Reason.HIGHWAY_OR_MOTORWAY]
    assert reason_label("SOMETHING_ELSE") == "SOMETHING_ELSE"


def test_instantaneous_speed():
    a, b = straight_track(2, 36, interval_s=10, with_speed=False)
    assert instantaneous_speed(a, b, 10) == pytest.approx(36, rel=1e-3)
    assert instantaneous_speed(None, b, 10) == 0.0
    assert instantaneous_speed(a, Point(b.lat, b.lng, b.timestamp_ms, 12.0), 10) == 12.0
    assert math.isnan(instantaneous_speed(a, Point(b.lat, b.lng, b.timestamp_ms, -5.0), 10))


def test_build_context_histories():
    history = straight_track(5, 50)
    state = seeded_state(history, [TransportMode.CAR] * 5)
    current = straight_track(6, 50)[-1]
    ctx = ctx_for(current, state)

    assert ctx.previous == history[-1]
    assert ctx.elapsed_s == pytest.approx(30)
    assert ctx.current_speed == 50
    assert ctx.previous_speed == 50
    # windows include the current fix, the mode history does not
    assert len(ctx.point_history) == 6 and ctx.point_history[-1] == current
    assert len(ctx.speed_history) == 6
    assert len(ctx.mode_history) == 5
    assert ctx.last_mode == TransportMode.CAR
    assert ctx.rolling_average_speed == pytest.approx(50)


def test_build_context_first_fix():
    ctx = ctx_for(Point(52.0, 13.0, T0, None), TrajectoryState())
    assert ctx.previous is None
    assert ctx.elapsed_s == 0.0
    assert ctx.current_speed == 0.0
    assert ctx.last_mode is None


def test_malformed_speed_is_kept_out_of_history():
    state = seeded_state(straight_track(3, 50), [TransportMode.CAR] * 3)
    current = Point(52.01, 13.0, T0 + 100_000, math.inf)
    ctx = ctx_for(current, state)
    assert not ctx.speed_valid
    assert len(ctx.speed_history) == 3


def test_out_of_range_position_is_kept_out_of_history(detector):
    state = detector.new_state()
    track = straight_track(3, 50)
    for p in track:
        detector.detect_point(None, p, None, None, state)
    bad = Point(95.0, 13.0, T0 + 120_000, 50.0)
    assert not ctx_for(bad, state).position_valid
    assert ctx_for(track[-1], state).position_valid

    detector.detect_point(None, bad, None, None, state)
    assert len(state.modes) == 4
    assert len(state.points) == 3
    assert state.last_point == track[-1]


def test_explicit_geotag_overrides_point_tag():
    point = Point(52.0, 13.0, T0, 10.0, station("A"))
    assert ctx_for(point, TrajectoryState()).at_train_station
    assert not ctx_for(point, TrajectoryState(), geotag=GeoTag(on_highway=True)).at_train_station


def test_station_helpers():
    state = seeded_state(straight_track(1, 50), [TransportMode.CAR],
                         last_station=StationVisit("A", T0, 52.0, 13.0))
    later = Point(52.0, 13.0, T0 + 10 * 60 * 1000, 10.0)
    ctx = ctx_for(later, state, geotag=station("B"))
    assert ctx.has_recent_station()
    assert ctx.at_other_station("A")
    assert not ctx.at_other_station("B")

    much_later = Point(52.0, 13.0, T0 + 31 * 60 * 1000, 10.0)
    assert not ctx_for(much_later, state).has_recent_station()
