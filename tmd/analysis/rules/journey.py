# tmd/analysis/rules/journey.py

"""
Rules that manage an active train or airplane journey: arrival, timeout,
dwell tolerance and continuation.

A train dwelling at a platform is still labelled train, and a train
arriving at its destination platform is stationary, although the current
speed would not support either on its own; such results are marked
`anchored` so the engine's plausibility guard leaves them alone. Every
other journey end picks a mode the current speed allows (`end_mode`).
"""

from __future__ import annotations

from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.journey import trailing_slow_duration_s
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, bracket_mode, make_result, possible
from tmd.analysis.types import DetectionResult, TransportMode

# modes a trajectory settles into once a journey is over, most likely first
_AFTER_JOURNEY = (TransportMode.STATIONARY, TransportMode.WALKING)


def end_mode(ctx: DetectionContext, *preferred: TransportMode) -> TransportMode:
    """
    Mode for the fix that ends a journey: the first of `preferred`, then
    stationary, then walking that the current speed allows, else the
    speed bracket.
    """
    for mode in (*preferred, *_AFTER_JOURNEY):
        if possible(ctx, mode):
            return mode
    return bracket_mode(ctx)


class BothStationsDetectedRule(DetectionRule):
    name = "Both Stations Detected"
    priority = 93
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        journey = ctx.journey_of(TransportMode.TRAIN)
        return (
            ctx.speed_valid
            and journey is not None
            and journey.start_station is not None
            and (journey.end_station is not None or ctx.at_other_station(journey.start_station))
            and ctx.current_speed >= ctx.cfg.station_train_speed_kmh
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        journey = ctx.journey
        end = journey.end_station or ctx.station_name
        return make_result(
            TransportMode.TRAIN,
            0.95,
            Reason.BOTH_STATIONS_DETECTED,
            f"Both start ({journey.start_station}) and end ({end}) train stations detected",
            start_station=journey.start_station,
            end_station=end,
        )


class TrainJourneyEndRule(DetectionRule):
    """
    A train journey is over when the trajectory slows down at a different
    named station, stays slow for five minutes, or exceeds the two-hour
    cap.
    """
    name = "Train Journey End"
    priority = 91
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        journey = ctx.journey_of(TransportMode.TRAIN)
        if not ctx.speed_valid or journey is None:
            return False
        return (
            ctx.current_speed < ctx.cfg.train_end_speed_kmh
            or journey.elapsed_ms(ctx.timestamp_ms) / 1000.0 > ctx.cfg.train_max_duration_s
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        journey = ctx.journey
        elapsed_s = journey.elapsed_ms(ctx.timestamp_ms) / 1000.0
        slow = ctx.current_speed < cfg.train_end_speed_kmh
        meta = {
            "start_station": journey.start_station,
            "journey_elapsed_s": elapsed_s,
            "journey_distance_m": journey.total_distance_m,
            "journey_end": True,
        }

        if slow and ctx.at_other_station(journey.start_station):
            # passengers alighting at the platform: stationary by definition
            return make_result(
                TransportMode.STATIONARY, 0.8, Reason.TRAIN_JOURNEY_END,
                f"Train journey ended: arrived at {ctx.station_name}",
                end_station=ctx.station_name, anchored=True, **meta,
            )
        if slow and trailing_slow_duration_s(ctx, cfg.train_end_speed_kmh) >= cfg.train_slowdown_s:
            return make_result(
                end_mode(ctx), 0.8, Reason.TRAIN_JOURNEY_END,
                "Train journey ended: extended stop",
                **meta,
            )
        if elapsed_s > cfg.train_max_duration_s:
            return make_result(
                end_mode(ctx), 0.8, Reason.TRAIN_JOURNEY_END,
                "Train journey ended: max duration exceeded",
                **meta,
            )
        return None


class AirplaneJourneyEndRule(DetectionRule):
    name = "Airplane Journey End"
    priority = 90
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and ctx.journey_of(TransportMode.AIRPLANE) is not None

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        journey = ctx.journey
        elapsed_s = journey.elapsed_ms(ctx.timestamp_ms) / 1000.0
        slow = ctx.current_speed < cfg.airplane_min_speed_kmh
        meta = {
            "start_airport": journey.start_airport,
            "journey_elapsed_s": elapsed_s,
            "journey_distance_m": journey.total_distance_m,
            "journey_end": True,
        }

        # a decelerating plane is still a plane while the speed allows it
        if slow and ctx.at_other_airport(journey.start_airport):
            return make_result(
                end_mode(ctx, TransportMode.AIRPLANE), 0.8, Reason.AIRPLANE_JOURNEY_END,
                f"Airplane journey ended: landed at {ctx.airport_name}",
                end_airport=ctx.airport_name, **meta,
            )
        if slow and trailing_slow_duration_s(ctx, cfg.airplane_min_speed_kmh) >= cfg.airplane_slowdown_s:
            return make_result(
                end_mode(ctx, TransportMode.AIRPLANE), 0.8, Reason.AIRPLANE_JOURNEY_END,
                "Airplane journey ended: extended slowdown",
                **meta,
            )
        if elapsed_s > cfg.airplane_max_duration_s:
            return make_result(
                end_mode(ctx), 0.8, Reason.AIRPLANE_JOURNEY_END,
                "Airplane journey ended: max duration exceeded",
                **meta,
            )
        return None


class UnrealisticTrainSegmentRule(DetectionRule):
    """
    A train journey that started without any station must cover 5 km or
    10 minutes; until then it is treated as a speed spike and the
    trajectory reverts to its most recent non-train, non-stationary mode.
    """
    name = "Unrealistic Train Segment"
    priority = 89
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        journey = ctx.journey_of(TransportMode.TRAIN)
        return (
            ctx.speed_valid
            and journey is not None
            and journey.start_station is None
            and journey.end_station is None
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        journey = ctx.journey
        elapsed_s = journey.elapsed_ms(ctx.timestamp_ms) / 1000.0
        if (
            journey.total_distance_m >= cfg.unrealistic_min_distance_m
            or elapsed_s >= cfg.unrealistic_min_duration_s
        ):
            return None

        skip = (TransportMode.TRAIN, TransportMode.STATIONARY, TransportMode.UNKNOWN)
        for entry in reversed(ctx.mode_history[-10:]):
            if entry.mode in skip or not possible(ctx, entry.mode):
                continue
            return make_result(
                entry.mode,
                0.75,
                Reason.UNREALISTIC_TRAIN_SEGMENT,
                f"Unrealistic train segment ({journey.total_distance_m / 1000:.1f} km, "
                f"{elapsed_s / 60:.1f} min); reverting to {entry.mode}",
                filtered_mode=TransportMode.TRAIN.value,
                journey_distance_m=journey.total_distance_m,
                journey_elapsed_s=elapsed_s,
                revert_since=journey.start_time_ms,
            )
        return None


class StartingStationOnlyRule(DetectionRule):
    name = "Starting Station Only"
    priority = 88
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        journey = ctx.journey_of(TransportMode.TRAIN)
        return (
            ctx.speed_valid
            and journey is not None
            and journey.start_station is not None
            and journey.end_station is None
        )

    def _recent_high_speed(self, ctx: DetectionContext) -> bool:
        cfg = ctx.cfg
        fast = [s for s in ctx.speed_history[-15:] if s >= cfg.train_recent_high_speed_kmh]
        return len(fast) >= cfg.train_recent_high_speed_count

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        journey = ctx.journey
        if ctx.current_speed >= ctx.cfg.train_continue_speed_kmh or self._recent_high_speed(ctx):
            return make_result(
                TransportMode.TRAIN,
                0.85,
                Reason.STARTING_STATION_ONLY,
                f"Continuing train journey from {journey.start_station} "
                f"({ctx.current_speed:.0f} km/h)",
                start_station=journey.start_station,
            )
        return make_result(
            TransportMode.TRAIN,
            0.7,
            Reason.TRAIN_JOURNEY_DWELL,
            f"Continuing train journey from {journey.start_station} (slow, possibly at a station)",
            start_station=journey.start_station,
            anchored=True,
        )


class AirplaneJourneyContinuationRule(DetectionRule):
    name = "Airplane Journey Continuation"
    priority = 87
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and ctx.journey_of(TransportMode.AIRPLANE) is not None
            and ctx.current_speed >= ctx.cfg.airplane_min_speed_kmh
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        return make_result(
            TransportMode.AIRPLANE,
            0.85,
            Reason.AIRPLANE_JOURNEY_CONTINUATION,
            f"Continuing airplane journey ({ctx.current_speed:.0f} km/h)",
            start_airport=ctx.journey.start_airport,
        )


class TrainJourneyContinuationRule(DetectionRule):
    """
    Any other active train journey: train speeds continue it, short
    slow stretches are tolerated as dwell.
    """
    name = "Train Journey Continuation"
    priority = 86
    family = RuleFamily.JOURNEY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and ctx.journey_of(TransportMode.TRAIN) is not None
            and ctx.current_speed <= ctx.cfg.train_max_speed_kmh
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        if ctx.current_speed >= ctx.cfg.train_end_speed_kmh:
            return make_result(
                TransportMode.TRAIN,
                0.8,
                Reason.TRAIN_JOURNEY_CONTINUATION,
                f"Continuing train journey ({ctx.current_speed:.0f} km/h)",
            )
        return make_result(
            TransportMode.TRAIN,
            0.65,
            Reason.TRAIN_JOURNEY_DWELL,
            "Train stopped briefly, journey continues",
            anchored=True,
        )
