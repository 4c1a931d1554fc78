# tmd/analysis/journey.py

"""
Journey continuity state machine.

States: no journey, train journey active, airplane journey active. The
rules decide what a fix is; `advance_journey` turns that decision into the
next `JourneyContext`. Journeys are immutable; every step returns a new
object (or None once the journey is over).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.signals import speed_variance
from tmd.analysis.types import DetectionResult, JourneyContext, TransportMode, JOURNEY_MODES
from tmd.utils.geo import haversine, is_straight_trajectory, is_valid_coordinate, path_length

STARTED = "started"
EXTENDED = "extended"
ENDED = "ended"


@dataclass(frozen=True)
class SegmentCheck:
    """
    Whether the recent window looks like an unbroken train ride.
    """
    qualifies: bool
    distance_m: float
    duration_s: float
    cv: float
    mean_speed_kmh: float
    straight: bool
    with_station_context: bool

    def as_metadata(self) -> dict:
        return {
            "segment_distance_m": round(self.distance_m, 1),
            "segment_duration_s": round(self.duration_s, 1),
            "segment_cv": round(self.cv, 4),
            "segment_straight": self.straight,
            "recent_station": self.with_station_context,
        }


def retroactive_segment(ctx: DetectionContext) -> SegmentCheck:
    """
    Check the point window leading up to the current fix.

    With a station visit in the last 30 minutes the segment needs >= 3 km
    or >= 5 min at CV < 0.2; without one, >= 5 km or >= 8 min at CV < 0.15.
    Either way the path must be straight and average train-plausible speed.
    The current fix's own speed is left out of the statistics.
    """
    cfg = ctx.cfg
    points = ctx.point_history
    speeds = list(ctx.speed_history[:-1] if ctx.speed_valid else ctx.speed_history)

    distance = path_length([p.coords for p in points])
    duration = (points[-1].timestamp_ms - points[0].timestamp_ms) / 1000.0 if len(points) > 1 else 0.0
    stats = speed_variance(speeds)
    straight = is_straight_trajectory(
        [p.coords for p in points], cfg.straight_max_variance_deg, cfg.straight_min_points
    )
    recent = ctx.has_recent_station()

    if recent:
        long_enough = (
            distance >= cfg.segment_min_distance_m_with_station
            or duration >= cfg.segment_min_duration_s_with_station
        )
        steady = stats.cv < cfg.segment_max_cv_with_station
    else:
        long_enough = distance >= cfg.segment_min_distance_m or duration >= cfg.segment_min_duration_s
        steady = stats.cv < cfg.segment_max_cv

    qualifies = (
        len(speeds) >= cfg.straight_min_points
        and long_enough
        and steady
        and straight
        and stats.mean >= cfg.station_train_speed_kmh
    )
    return SegmentCheck(qualifies, distance, duration, stats.cv, stats.mean, straight, recent)


def trailing_slow_duration_s(ctx: DetectionContext, threshold_kmh: float) -> float:
    """
    How long the trajectory has been below `threshold_kmh`, counting back
    from the current fix through the mode history.
    """
    if not ctx.speed_valid or ctx.current_speed >= threshold_kmh:
        return 0.0
    earliest = ctx.timestamp_ms
    for entry in reversed(ctx.mode_history):
        if not (math.isfinite(entry.speed_kmh) and entry.speed_kmh < threshold_kmh):
            break
        earliest = entry.timestamp_ms
    return (ctx.timestamp_ms - earliest) / 1000.0


def _start(ctx: DetectionContext, result: DetectionResult) -> JourneyContext:
    mode = result.mode
    now = ctx.timestamp_ms
    origin = ctx.point

    if mode == TransportMode.AIRPLANE:
        return JourneyContext(
            type=mode,
            start_time_ms=now,
            start_airport=ctx.airport_name if ctx.at_airport else None,
            start_lat=origin.lat,
            start_lng=origin.lng,
            last_timestamp_ms=now,
        )

    if not result.metadata.get("retroactive") or len(ctx.point_history) < 2:
        return JourneyContext(
            type=mode,
            start_time_ms=now,
            start_station=ctx.station_name if ctx.at_train_station else None,
            start_lat=origin.lat,
            start_lng=origin.lng,
            last_timestamp_ms=now,
        )

    # back-date to the start of the window the segment was judged on
    first = ctx.point_history[0]
    distance = path_length([p.coords for p in ctx.point_history])
    elapsed_s = (now - first.timestamp_ms) / 1000.0
    return JourneyContext(
        type=mode,
        start_time_ms=first.timestamp_ms,
        end_station=ctx.station_name if ctx.at_train_station else None,
        start_lat=first.lat,
        start_lng=first.lng,
        total_distance_m=distance,
        average_speed_kmh=distance / elapsed_s * 3.6 if elapsed_s > 0 else 0.0,
        last_timestamp_ms=now,
    )


def _extend(journey: JourneyContext, ctx: DetectionContext) -> JourneyContext:
    now = ctx.timestamp_ms
    distance = journey.total_distance_m
    prev = ctx.previous
    if (
        prev is not None
        and is_valid_coordinate(*prev.coords)
        and ctx.position_valid
    ):
        distance += haversine(prev.coords, ctx.point.coords)
    elapsed_s = journey.elapsed_ms(now) / 1000.0

    changes = {
        "total_distance_m": distance,
        "average_speed_kmh": distance / elapsed_s * 3.6 if elapsed_s > 0 else journey.average_speed_kmh,
        "last_timestamp_ms": now,
    }
    if journey.type == TransportMode.TRAIN and ctx.at_other_station(journey.start_station):
        changes["end_station"] = ctx.station_name
    if journey.type == TransportMode.AIRPLANE and ctx.at_other_airport(journey.start_airport):
        changes["end_airport"] = ctx.airport_name
    return replace(journey, **changes)


def advance_journey(
    journey: Optional[JourneyContext],
    ctx: DetectionContext,
    result: DetectionResult,
) -> tuple[Optional[JourneyContext], Optional[str]]:
    """
    Next journey given the accepted result for the current fix.

    Returns the new journey (or None) and the transition that happened:
    "started", "extended", "ended" or None.

    - an explicit end or a non-journey mode clears the journey
    - a journey mode with no journey (or a journey of the other type)
      starts a fresh one
    - the same journey mode extends the running one
    """
    mode = result.mode
    ended = ENDED if journey is not None else None

    if result.metadata.get("journey_end") or mode not in JOURNEY_MODES:
        return None, ended
    if result.metadata.get("journey_complete"):
        # arrival decided retroactively; nothing left to track
        return None, ended
    if journey is None or journey.type != mode:
        return _start(ctx, result), STARTED
    return _extend(journey, ctx), EXTENDED
