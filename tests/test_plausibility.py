import math

import pytest

from tmd.analysis import plausibility as pl
from tmd.analysis.types import TransportMode as M


@pytest.mark.parametrize("speed, mode", [
    (0.0, M.STATIONARY),
    (1.99, M.STATIONARY),
    (2.0, M.WALKING),
    (8.0, M.CYCLING),
    (25.0, M.CAR),
    (119.9, M.CAR),
    (120.0, M.TRAIN),
    (300.0, M.AIRPLANE),
    (5000.0, M.AIRPLANE),
])
def test_speed_bracket_boundaries(speed, mode):
    assert pl.speed_bracket(speed) == mode


@pytest.mark.parametrize("speed", [-1.0, math.nan, math.inf, None])
def test_speed_bracket_invalid_speed(speed):
    assert pl.speed_bracket(speed) == M.UNKNOWN


def test_is_physically_possible_ranges():
    assert pl.is_physically_possible(M.WALKING, 5)
    assert not pl.is_physically_possible(M.WALKING, 13)
    assert pl.is_physically_possible(M.TRAIN, 30)
    assert not pl.is_physically_possible(M.TRAIN, 29.9)
    assert not pl.is_physically_possible(M.AIRPLANE, 100)
    assert pl.is_physically_possible("car", 180)


def test_unknown_mode_and_bad_speed_count_as_possible():
    assert pl.is_physically_possible(M.UNKNOWN, 5000)
    assert pl.is_physically_possible("hovercraft", 50)
    assert pl.is_physically_possible(M.WALKING, math.nan)


def test_exceeds_maximum():
    assert pl.exceeds_maximum(M.CAR, 181)
    assert not pl.exceeds_maximum(M.CAR, 5)


def test_filter_possible_modes_keeps_order():
    candidates = [M.AIRPLANE, M.CAR, M.CYCLING, M.WALKING]
    assert pl.filter_possible_modes(40, candidates) == [M.CAR, M.CYCLING]


def test_acceleration_limits():
    # 11 km/h per second is too much for a pedestrian, not for a car
    assert not pl.is_acceleration_possible(M.WALKING, 55, 5)
    assert pl.is_acceleration_possible(M.CAR, 55, 5)
    # a zero gap carries no information
    assert pl.is_acceleration_possible(M.WALKING, 55, 0)


def test_impossible_transitions():
    assert not pl.is_transition_possible(M.WALKING, M.AIRPLANE)
    assert not pl.is_transition_possible(M.CYCLING, M.TRAIN)
    assert not pl.is_transition_possible("train", "cycling")
    assert pl.is_transition_possible(M.WALKING, M.CAR)
    assert pl.is_transition_possible(M.AIRPLANE, M.WALKING)
    assert pl.is_transition_possible("bogus", M.CAR)


def test_limits_for_custom_table():
    table = {M.CAR: pl.ModeLimits(0, 50, 1)}
    assert pl.limits_for(M.CAR, table).max_speed_kmh == 50
    assert pl.limits_for(M.TRAIN, table) is None
