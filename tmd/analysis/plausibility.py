"""
Physical plausibility table: what speeds and accelerations each transport
mode can actually reach, the speed brackets used as a last-resort guess,
and the mode pairs that cannot follow one another.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

from tmd.analysis.types import TransportMode


@dataclass(frozen=True)
class ModeLimits:
    min_speed_kmh: float
    max_speed_kmh: float
    max_acceleration_kmh_per_s: float


DEFAULT_MODE_LIMITS: Mapping[TransportMode, ModeLimits] = {
    TransportMode.STATIONARY: ModeLimits(0.0, 2.0, 5.0),
    TransportMode.WALKING:    ModeLimits(0.0, 12.0, 6.0),
    TransportMode.CYCLING:    ModeLimits(5.0, 45.0, 8.0),
    TransportMode.CAR:        ModeLimits(10.0, 180.0, 15.0),
    TransportMode.TRAIN:      ModeLimits(30.0, 350.0, 6.0),
    TransportMode.AIRPLANE:   ModeLimits(150.0, 1000.0, 15.0),
}


@dataclass(frozen=True)
class SpeedBracket:
    min_kmh: float
    max_kmh: float
    mode: TransportMode


# half-open [min, max)
DEFAULT_SPEED_BRACKETS: tuple[SpeedBracket, ...] = (
    SpeedBracket(0.0, 2.0, TransportMode.STATIONARY),
    SpeedBracket(2.0, 8.0, TransportMode.WALKING),
    SpeedBracket(8.0, 25.0, TransportMode.CYCLING),
    SpeedBracket(25.0, 120.0, TransportMode.CAR),
    SpeedBracket(120.0, 300.0, TransportMode.TRAIN),
    SpeedBracket(300.0, math.inf, TransportMode.AIRPLANE),
)

# (from, to) pairs that cannot happen back to back
IMPOSSIBLE_TRANSITIONS: frozenset[tuple[TransportMode, TransportMode]] = frozenset({
    (TransportMode.WALKING, TransportMode.AIRPLANE),
    (TransportMode.CYCLING, TransportMode.AIRPLANE),
    (TransportMode.AIRPLANE, TransportMode.CYCLING),
    (TransportMode.TRAIN, TransportMode.CYCLING),
    (TransportMode.CYCLING, TransportMode.TRAIN),
})


def is_valid_speed(speed_kmh: float | None) -> bool:
    return speed_kmh is not None and math.isfinite(speed_kmh) and speed_kmh >= 0


def speed_bracket(
    speed_kmh: float,
    brackets: Iterable[SpeedBracket] = DEFAULT_SPEED_BRACKETS,
) -> TransportMode:
    """
    Mode whose bracket contains the speed; UNKNOWN for invalid speeds.
    """
    if not is_valid_speed(speed_kmh):
        return TransportMode.UNKNOWN
    for b in brackets:
        if b.min_kmh <= speed_kmh < b.max_kmh:
            return b.mode
    return TransportMode.UNKNOWN


def limits_for(
    mode: TransportMode | str,
    limits: Mapping[TransportMode, ModeLimits] = DEFAULT_MODE_LIMITS,
) -> ModeLimits | None:
    try:
        return limits.get(TransportMode(mode))
    except ValueError:
        return None


def is_physically_possible(
    mode: TransportMode | str,
    speed_kmh: float,
    limits: Mapping[TransportMode, ModeLimits] = DEFAULT_MODE_LIMITS,
) -> bool:
    """
    Pure range check of a speed against a mode's limits.

    Modes without limits (unknown) and unusable speeds cannot be ruled
    out and count as possible.
    """
    lim = limits_for(mode, limits)
    if lim is None or not is_valid_speed(speed_kmh):
        return True
    return lim.min_speed_kmh <= speed_kmh <= lim.max_speed_kmh


def exceeds_maximum(
    mode: TransportMode | str,
    speed_kmh: float,
    limits: Mapping[TransportMode, ModeLimits] = DEFAULT_MODE_LIMITS,
) -> bool:
    lim = limits_for(mode, limits)
    if lim is None or not is_valid_speed(speed_kmh):
        return False
    return speed_kmh > lim.max_speed_kmh


def filter_possible_modes(
    speed_kmh: float,
    candidates: Iterable[TransportMode | str],
    limits: Mapping[TransportMode, ModeLimits] = DEFAULT_MODE_LIMITS,
) -> list[TransportMode]:
    """
    Drop candidates whose speed range excludes the observed speed,
    preserving the candidates' order.
    """
    return [
        TransportMode(m) for m in candidates
        if is_physically_possible(m, speed_kmh, limits)
    ]


def is_acceleration_possible(
    mode: TransportMode | str,
    delta_kmh: float,
    dt_s: float,
    limits: Mapping[TransportMode, ModeLimits] = DEFAULT_MODE_LIMITS,
) -> bool:
    lim = limits_for(mode, limits)
    if lim is None or dt_s <= 0 or not math.isfinite(delta_kmh):
        return True
    return abs(delta_kmh) / dt_s <= lim.max_acceleration_kmh_per_s


def is_transition_possible(from_mode: TransportMode | str, to_mode: TransportMode | str) -> bool:
    try:
        pair = (TransportMode(from_mode), TransportMode(to_mode))
    except ValueError:
        return True
    return pair not in IMPOSSIBLE_TRANSITIONS
