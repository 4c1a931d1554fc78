"""
Closed set of reason codes attached to every detection result, with the
English labels the UI shows for them.
"""

from enum import Enum


class Reason(str, Enum):
    # geographic overrides
    HIGHWAY_OR_MOTORWAY = "HIGHWAY_OR_MOTORWAY"
    TRAIN_STATION_AND_SPEED = "TRAIN_STATION_AND_SPEED"
    TRAIN_STATION_BOARDING = "TRAIN_STATION_BOARDING"
    AIRPORT_AND_PLANE_SPEED = "AIRPORT_AND_PLANE_SPEED"

    # physics
    PHYSICALLY_IMPOSSIBLE = "PHYSICALLY_IMPOSSIBLE"
    ACCELERATION_IMPOSSIBLE = "ACCELERATION_IMPOSSIBLE"

    # journeys
    BOTH_STATIONS_DETECTED = "BOTH_STATIONS_DETECTED"
    FINAL_STATION_ONLY = "FINAL_STATION_ONLY"
    STARTING_STATION_ONLY = "STARTING_STATION_ONLY"
    TRAIN_JOURNEY_CONTINUATION = "TRAIN_JOURNEY_CONTINUATION"
    TRAIN_JOURNEY_DWELL = "TRAIN_JOURNEY_DWELL"
    TRAIN_JOURNEY_END = "TRAIN_JOURNEY_END"
    AIRPLANE_JOURNEY_CONTINUATION = "AIRPLANE_JOURNEY_CONTINUATION"
    AIRPLANE_JOURNEY_END = "AIRPLANE_JOURNEY_END"
    UNREALISTIC_TRAIN_SEGMENT = "UNREALISTIC_TRAIN_SEGMENT"
    TRAIN_SPEED_WITHOUT_STATION = "TRAIN_SPEED_WITHOUT_STATION"

    # continuity / hysteresis
    MIN_DURATION_NOT_MET = "MIN_DURATION_NOT_MET"
    IMPOSSIBLE_TRANSITION = "IMPOSSIBLE_TRANSITION"
    HIGH_SPEED_CONTINUITY = "HIGH_SPEED_CONTINUITY"
    SPEED_SIMILARITY = "SPEED_SIMILARITY"
    MODE_CONTINUITY = "MODE_CONTINUITY"

    # patterns
    MULTI_SIGNAL_CONSENSUS = "MULTI_SIGNAL_CONSENSUS"
    SPEED_PATTERN_TRAIN = "SPEED_PATTERN_TRAIN"
    SPEED_PATTERN_CAR = "SPEED_PATTERN_CAR"
    STOP_PATTERN = "STOP_PATTERN"

    # speed brackets
    MULTI_POINT_SPEED_STABLE = "MULTI_POINT_SPEED_STABLE"
    SPEED_BRACKET_MATCH = "SPEED_BRACKET_MATCH"

    # engine fallbacks
    FALLBACK_PREVIOUS_MODE = "FALLBACK_PREVIOUS_MODE"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


REASON_LABELS: dict[Reason, str] = {
    Reason.HIGHWAY_OR_MOTORWAY: "Detected motorway or highway, assumed car",
    Reason.TRAIN_STATION_AND_SPEED: "At a train station with train-like speed",
    Reason.TRAIN_STATION_BOARDING: "At a train station, boarding or alighting",
    Reason.AIRPORT_AND_PLANE_SPEED: "At an airport with airplane speed",
    Reason.PHYSICALLY_IMPOSSIBLE: "Mode changed due to physically impossible speed",
    Reason.ACCELERATION_IMPOSSIBLE: "Mode changed due to impossible acceleration",
    Reason.BOTH_STATIONS_DETECTED: "Both start and end train stations detected",
    Reason.FINAL_STATION_ONLY: "Final train station detected, assuming train travel",
    Reason.STARTING_STATION_ONLY: "Continuing from starting train station",
    Reason.TRAIN_JOURNEY_CONTINUATION: "Continuing existing train journey",
    Reason.TRAIN_JOURNEY_DWELL: "Train stopped briefly, journey continues",
    Reason.TRAIN_JOURNEY_END: "Train journey ended",
    Reason.AIRPLANE_JOURNEY_CONTINUATION: "Continuing existing airplane journey",
    Reason.AIRPLANE_JOURNEY_END: "Airplane journey ended",
    Reason.UNREALISTIC_TRAIN_SEGMENT: "Segment too short to be a train journey",
    Reason.TRAIN_SPEED_WITHOUT_STATION: "Train-like speed without station context",
    Reason.MIN_DURATION_NOT_MET: "Minimum duration not met for mode change",
    Reason.IMPOSSIBLE_TRANSITION: "Impossible transition between modes reverted",
    Reason.HIGH_SPEED_CONTINUITY: "Maintaining mode at high speed",
    Reason.SPEED_SIMILARITY: "Speed similar to previous, maintaining mode",
    Reason.MODE_CONTINUITY: "Maintaining previous transport mode",
    Reason.MULTI_SIGNAL_CONSENSUS: "Several independent signals agree",
    Reason.SPEED_PATTERN_TRAIN: "Steady speed and straight path indicate train",
    Reason.SPEED_PATTERN_CAR: "Variable speed indicates car",
    Reason.STOP_PATTERN: "Stop frequency and duration match mode",
    Reason.MULTI_POINT_SPEED_STABLE: "Stable speed calculated from multiple points",
    Reason.SPEED_BRACKET_MATCH: "Speed matches transport mode bracket",
    Reason.FALLBACK_PREVIOUS_MODE: "No rule applied, previous mode kept",
    Reason.UNKNOWN: "No rule applied and no previous mode",
}


def reason_label(code: Reason | str) -> str:
    """
    Label for a reason code; unknown strings are returned unchanged.
    """
    try:
        return REASON_LABELS[Reason(code)]
    except ValueError:
        return str(code)
