import threading

import pytest

from tmd.analysis.detector import ModeDetector, TrajectoryRegistry, classify_tracks, with_derived_speed
from tmd.analysis.errors import OutOfOrderPointError
from tmd.analysis.plausibility import is_physically_possible
from tmd.analysis.reasons import Reason
from tmd.analysis.types import GeoTag, Point, TransportMode as M

from conftest import T0, airport, follow, station, straight_track


def _feed(detector, state, points):
    return [detector.detect_point(None, p, None, None, state) for p in points]


# -----------------------------------------------------------------------------
# end-to-end scenarios

def test_steady_car_track(detector):
    classified = detector.classify_track(straight_track(25, 60))
    assert {c.mode for c in classified} == {"car"}
    assert classified[0].code == Reason.MULTI_POINT_SPEED_STABLE.value
    assert classified[1].code == Reason.SPEED_SIMILARITY.value


def test_final_station_rescores_history_to_train(detector):
    state = detector.new_state()
    ride = straight_track(21, 60)
    before = _feed(detector, state, ride)
    assert {r.mode for r in before} == {M.CAR}

    arrival = follow(ride[-1], 60, geotag=station("Berlin Hbf"))
    [result] = _feed(detector, state, [arrival])
    assert result.mode == M.TRAIN
    assert result.code == Reason.FINAL_STATION_ONLY
    assert result.confidence == pytest.approx(0.9)
    assert result.metadata["rescored"] == 19
    assert all(entry.mode == M.TRAIN for entry in state.modes)

    assert state.journey is not None
    assert state.journey.end_station == "Berlin Hbf"
    assert state.journey.start_time_ms == ride[2].timestamp_ms
    assert state.last_station.name == "Berlin Hbf"


def test_train_journey_between_two_stations(detector):
    state = detector.new_state()
    board = Point(52.0, 13.0, T0, 5.0, station("A"))
    [boarding] = _feed(detector, state, [board])
    assert boarding.mode == M.TRAIN
    assert boarding.code == Reason.TRAIN_STATION_BOARDING
    assert state.journey.start_station == "A"

    ride, last = [], board
    for _ in range(8):
        last = follow(last, 100)
        ride.append(last)
    results = _feed(detector, state, ride)
    assert all(r.mode == M.TRAIN for r in results)
    assert all(r.code == Reason.STARTING_STATION_ONLY for r in results)

    [arrival] = _feed(detector, state, [follow(last, 10, geotag=station("B"))])
    assert arrival.mode == M.STATIONARY
    assert arrival.confidence == pytest.approx(0.8)
    assert "arrived at B" in arrival.reason
    assert state.journey is None


def test_walking_glitch_to_airplane_is_reverted(detector):
    state = detector.new_state()
    walk = straight_track(5, 5, interval_s=10)
    assert {r.mode for r in _feed(detector, state, walk)} == {M.WALKING}

    [glitch] = _feed(detector, state, [follow(walk[-1], 400, 10)])
    assert glitch.mode == M.AIRPLANE
    assert glitch.code == Reason.PHYSICALLY_IMPOSSIBLE

    [back] = _feed(detector, state, [follow(walk[-1], 5, 20)])
    assert back.mode == M.WALKING
    assert back.code == Reason.IMPOSSIBLE_TRANSITION
    assert back.metadata["rescored"] == 1
    assert [e.mode for e in state.modes][-2:] == [M.WALKING, M.WALKING]
    assert state.journey is None


def test_cycling_speed_spike_is_not_a_train(detector):
    state = detector.new_state()
    ride = straight_track(5, 15, interval_s=10)
    assert {r.mode for r in _feed(detector, state, ride)} == {M.CYCLING}

    [spike] = _feed(detector, state, [follow(ride[-1], 150, 10)])
    assert spike.mode == M.TRAIN

    [back] = _feed(detector, state, [follow(ride[-1], 15, 20)])
    assert back.mode == M.CYCLING
    assert back.code == Reason.UNREALISTIC_TRAIN_SEGMENT
    assert state.journey is None
    # the discarded train fix is re-scored in the history as well
    assert back.metadata["rescored"] == 1
    assert [e.mode for e in state.modes][-3:] == [M.CYCLING] * 3


def test_speed_spike_after_long_ride_starts_journey_at_the_spike(detector):
    state = detector.new_state()
    ride = straight_track(21, 15, interval_s=40)
    _feed(detector, state, ride)

    spike = follow(ride[-1], 150, 40)
    [result] = _feed(detector, state, [spike])
    assert result.mode == M.TRAIN
    assert state.journey.start_time_ms == spike.timestamp_ms
    assert state.journey.total_distance_m == 0.0

    after, last = [], spike
    for _ in range(6):
        last = follow(last, 15, 40)
        after.append(last)
    results = _feed(detector, state, after)
    assert results[0].mode == M.CYCLING
    assert results[0].code == Reason.UNREALISTIC_TRAIN_SEGMENT
    assert all(r.mode != M.TRAIN for r in results)
    assert state.journey is None


def test_airplane_slowdown_ends_journey_with_a_possible_mode(detector):
    state = detector.new_state()
    takeoff = Point(50.03, 8.57, T0, 250.0, airport("FRA"))
    fixes, last = [takeoff], takeoff
    for speed in (600, 600, 600, 600, 600, 190, 180, 170, 160):
        last = follow(last, speed, 60)
        fixes.append(last)
    results = _feed(detector, state, fixes)

    for point, result in zip(fixes, results):
        assert is_physically_possible(result.mode, point.speed_kmh), (point.speed_kmh, result)
    end = results[-1]
    assert end.code == Reason.AIRPLANE_JOURNEY_END
    assert end.mode == M.AIRPLANE
    assert state.journey is None


def test_highway_forces_car(detector):
    point = Point(52.0, 13.0, T0, 90.0, GeoTag(on_highway=True))
    result = detector.detect_point(None, point, None, None, detector.new_state())
    assert result.mode == M.CAR
    assert result.confidence == pytest.approx(0.95)
    assert result.code == Reason.HIGHWAY_OR_MOTORWAY


def test_short_high_speed_burst_stays_car(detector):
    state = detector.new_state()
    drive = straight_track(5, 50, interval_s=15)
    _feed(detector, state, drive)
    [burst] = _feed(detector, state, [follow(drive[-1], 96, 15)])
    assert burst.mode == M.CAR
    assert burst.code == Reason.HIGH_SPEED_CONTINUITY


def test_short_burst_from_fresh_state_is_not_train(detector):
    # ~400 m in 15 s at a near-constant speed (CV about 0.02), no tags
    burst = straight_track(4, 96, interval_s=5)
    burst = [Point(p.lat, p.lng, p.timestamp_ms, s) for p, s in zip(burst, [94, 98, 96, 93])]
    results = _feed(detector, detector.new_state(), burst)
    assert all(r.mode != M.TRAIN for r in results)


SEED_TRACKS = {
    "walking": lambda: straight_track(5, 5, interval_s=10),
    "cycling": lambda: straight_track(5, 15, interval_s=10),
    "car": lambda: straight_track(8, 60),
    "train": lambda: _boarded_ride(),
    "airplane": lambda: _flight(),
}


def _boarded_ride():
    fixes = [Point(52.0, 13.0, T0, 5.0, station("A"))]
    for _ in range(8):
        fixes.append(follow(fixes[-1], 100))
    return fixes


def _flight():
    fixes = [Point(50.03, 8.57, T0, 250.0, airport("FRA"))]
    for _ in range(5):
        fixes.append(follow(fixes[-1], 600, 60))
    return fixes


@pytest.mark.parametrize("seed", sorted(SEED_TRACKS))
@pytest.mark.parametrize("speed", [0, 1, 5, 10, 20, 40, 80, 130, 170, 250, 400, 900])
def test_result_is_plausible_for_any_speed(detector, seed, speed):
    state = detector.new_state()
    track = SEED_TRACKS[seed]()
    _feed(detector, state, track)
    [result] = _feed(detector, state, [follow(track[-1], speed)])

    assert 0.0 <= result.confidence <= 1.0
    if not is_physically_possible(result.mode, speed):
        # only a train dwelling mid-journey may keep an implausible mode
        assert result.metadata.get("anchored")
        assert result.code == Reason.TRAIN_JOURNEY_DWELL


def test_history_is_bounded(detector):
    state = detector.new_state()
    _feed(detector, state, straight_track(30, 50))
    assert len(state) == 20
    assert len(state.points) == 20
    assert len(state.speeds) == 20


def test_classification_is_deterministic(detector):
    track = straight_track(21, 60) + [follow(straight_track(21, 60)[-1], 60, geotag=station("X"))]
    assert detector.classify_track(track) == detector.classify_track(track)
    assert ModeDetector().classify_track(track) == detector.classify_track(track)


def test_reset_state_replays_identically(detector):
    ride = straight_track(21, 60)
    track = straight_track(5, 5, interval_s=10, start_ms=T0 - 60_000) + ride
    track.append(follow(ride[-1], 60, geotag=station("X")))

    state = detector.new_state()
    first = [(r.mode, r.code, r.confidence) for r in _feed(detector, state, track)]
    first_history = [e.mode for e in state.modes]

    state.reset()
    assert len(state) == 0
    assert state.journey is None
    assert state.last_timestamp_ms is None

    second = [(r.mode, r.code, r.confidence) for r in _feed(detector, state, track)]
    assert second == first
    assert [e.mode for e in state.modes] == first_history


def test_out_of_order_point_is_rejected(detector):
    state = detector.new_state()
    a, b = straight_track(2, 50)
    _feed(detector, state, [b])
    with pytest.raises(OutOfOrderPointError):
        detector.detect_point(None, a, None, None, state)
    # equal timestamps are accepted
    detector.detect_point(None, b, None, None, state)


def test_malformed_speed_keeps_previous_mode(detector):
    state = detector.new_state()
    track = straight_track(3, 60)
    _feed(detector, state, track)
    bad = Point(track[-1].lat, track[-1].lng, track[-1].timestamp_ms + 30_000, float("nan"))
    [result] = _feed(detector, state, [bad])
    assert result.mode == M.CAR
    assert result.code == Reason.MODE_CONTINUITY


# -----------------------------------------------------------------------------
# derived speeds, registry, parallel tracks

def test_with_derived_speed():
    a, b = straight_track(2, 60, with_speed=False)
    assert with_derived_speed(a, b).speed_kmh == pytest.approx(60, rel=1e-3)
    assert with_derived_speed(None, b) is b
    reported = Point(b.lat, b.lng, b.timestamp_ms, 12.0)
    assert with_derived_speed(a, reported) is reported


def test_classify_track_derives_missing_speeds(detector):
    classified = detector.classify_track(straight_track(6, 60, with_speed=False))
    assert classified[0].speed_kmh == 0.0
    assert classified[-1].speed_kmh == pytest.approx(60, abs=0.1)
    assert classified[-1].mode == "car"


def test_registry_keeps_trajectories_apart(detector):
    registry = TrajectoryRegistry(detector)
    for p in straight_track(5, 5, interval_s=10):
        registry.process("walk", p)
    for p in straight_track(5, 60):
        registry.process("drive", p)

    assert "walk" in registry and "drive" in registry
    assert len(registry) == 2
    assert registry.state("walk").last_mode == M.WALKING
    assert registry.state("drive").last_mode == M.CAR


def test_registry_reset_and_drop(detector):
    registry = TrajectoryRegistry(detector)
    registry.process_many("t", straight_track(4, 60))
    assert registry.reset("t")
    assert len(registry.state("t")) == 0
    assert not registry.reset("missing")
    assert registry.drop("t")
    assert "t" not in registry
    assert not registry.drop("t")


def test_registry_rejects_out_of_order(detector):
    registry = TrajectoryRegistry(detector)
    a, b = straight_track(2, 60)
    registry.process("t", b)
    with pytest.raises(OutOfOrderPointError) as err:
        registry.process("t", a)
    assert err.value.trajectory_id == "t"


def test_registry_concurrent_trajectories(detector):
    registry = TrajectoryRegistry(detector)
    track = straight_track(15, 60)

    def run(tid):
        for p in track:
            registry.process(tid, p)

    threads = [threading.Thread(target=run, args=(f"t{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 4
    expected = [e.mode for e in registry.state("t0").modes]
    for i in range(1, 4):
        assert [e.mode for e in registry.state(f"t{i}").modes] == expected


def test_classify_tracks_preserves_order(detector):
    tracks = {
        "b": straight_track(6, 60),
        "a": straight_track(6, 5, interval_s=10),
    }
    results = classify_tracks(detector, tracks, max_workers=2)
    assert list(results) == ["b", "a"]
    assert results["b"][-1].mode == "car"
    assert results["a"][-1].mode == "walking"
