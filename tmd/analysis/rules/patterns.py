# tmd/analysis/rules/patterns.py

"""
Rules that read the shape of the recent trajectory rather than the single
fix: speed variance, straightness, stop rhythm and sampling frequency.
They need a populated window and stay silent until they have one.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, make_result
from tmd.analysis.signals import (
    ACTIVE_NAVIGATION,
    BACKGROUND_TRACKING,
    has_sustained_speed,
    has_train_like_speed,
    speed_transitions,
    speed_variance,
    stop_pattern,
)
from tmd.analysis.types import DetectionResult, TransportMode
from tmd.utils.geo import is_straight_trajectory, path_length


class Signal(NamedTuple):
    mode: TransportMode
    confidence: float
    source: str


def _window_duration_s(ctx: DetectionContext) -> float:
    history = ctx.mode_history
    if len(history) < 2:
        return 0.0
    return (history[-1].timestamp_ms - history[0].timestamp_ms) / 1000.0


def _straight(ctx: DetectionContext) -> bool:
    return is_straight_trajectory(
        ctx.coords_history, ctx.cfg.straight_max_variance_deg, ctx.cfg.straight_min_points
    )


class MultiSignalCombinationRule(DetectionRule):
    """
    Combine up to four weak signals in the ambiguous 40-130 km/h band.

    Signals: GPS sampling frequency, stop pattern, speed variance and a
    coarse speed bracket. At least two must agree; the combined confidence
    is their mean plus 0.05 per agreeing signal (at most 0.15), capped at
    0.95, and discarded below 0.75.
    """
    name = "Multi-Signal Combination"
    priority = 76
    family = RuleFamily.PATTERN

    def can_apply(self, ctx: DetectionContext) -> bool:
        cfg = ctx.cfg
        return (
            ctx.speed_valid
            and len(ctx.point_history) >= cfg.pattern_min_samples
            and len(ctx.speed_history) >= cfg.pattern_min_samples
            and cfg.multi_signal_min_speed_kmh <= ctx.current_speed <= cfg.multi_signal_max_speed_kmh
        )

    def _gps_signal(self, ctx: DetectionContext) -> Optional[Signal]:
        gps = ctx.gps
        if gps.pattern == ACTIVE_NAVIGATION and gps.likely_mode == TransportMode.CAR:
            return Signal(TransportMode.CAR, 0.75, "GPS frequency (active navigation)")
        if gps.pattern == BACKGROUND_TRACKING and ctx.current_speed >= 70:
            return Signal(TransportMode.TRAIN, 0.7, "GPS frequency (background)")
        return None

    def _stop_signal(self, ctx: DetectionContext) -> Optional[Signal]:
        if path_length(ctx.coords_history) < ctx.cfg.stop_pattern_min_distance_m:
            return None
        stops = stop_pattern(ctx.point_history, ctx.cfg)
        if stops.likely_mode == TransportMode.UNKNOWN:
            return None
        return Signal(stops.likely_mode, stops.confidence, f"Stop pattern ({stops.pattern})")

    def _variance_signal(self, ctx: DetectionContext) -> Optional[Signal]:
        if len(ctx.speed_history) < 5:
            return None
        cv = speed_variance(ctx.speed_history).cv
        if cv < 0.2 and ctx.current_speed >= 70:
            return Signal(TransportMode.TRAIN, 0.7, f"Speed variance (CV={cv:.3f})")
        if cv > 0.3:
            return Signal(TransportMode.CAR, 0.75, f"Speed variance (CV={cv:.3f})")
        return None

    def _bracket_signal(self, ctx: DetectionContext) -> Optional[Signal]:
        speed = ctx.current_speed
        if 35 <= speed < 60:
            return Signal(TransportMode.CAR, 0.55, "Speed bracket (35-60 km/h)")
        if 110 <= speed <= 130:
            return Signal(TransportMode.TRAIN, 0.6, "Speed bracket (110-130 km/h)")
        return None

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        signals: List[Signal] = []
        for derive in (self._gps_signal, self._stop_signal, self._variance_signal):
            sig = derive(ctx)
            if sig is not None and sig.confidence >= cfg.multi_signal_min_signal_confidence:
                signals.append(sig)
        sig = self._bracket_signal(ctx)
        if sig is not None and sig.confidence >= cfg.multi_signal_min_bracket_confidence:
            signals.append(sig)
        if len(signals) < 2:
            return None

        counts: dict[TransportMode, int] = {}
        for s in signals:
            counts[s.mode] = counts.get(s.mode, 0) + 1
        consensus = max(counts, key=counts.get)
        if counts[consensus] < 2:
            return None

        agreeing = [s for s in signals if s.mode == consensus]
        mean = sum(s.confidence for s in agreeing) / len(agreeing)
        bonus = min(cfg.multi_signal_max_bonus, cfg.multi_signal_per_signal_bonus * len(agreeing))
        combined = min(cfg.multi_signal_max_confidence, mean + bonus)
        if combined < cfg.multi_signal_min_confidence:
            return None

        return make_result(
            consensus,
            combined,
            Reason.MULTI_SIGNAL_CONSENSUS,
            f"Multi-signal consensus ({len(agreeing)}/{len(signals)} signals): "
            + ", ".join(s.source for s in agreeing),
            total_signals=len(signals),
            agreeing_signals=len(agreeing),
            mean_confidence=mean,
            signal_bonus=bonus,
            sources=[s.source for s in agreeing],
        )


class SpeedPatternTrainRule(DetectionRule):
    """
    Score train-vs-car evidence for steady 80-120 km/h travel with no
    station or motorway tag.

    Train points: low CV (3/2/1 for < 0.12/0.18/0.25), straight path (2),
    sustained 90 km/h for 10 min (2), speed >= 100 (1), background GPS
    sampling (1), smooth speed transitions (2). Car points: CV >= 0.25 (2),
    curvy path (1), speed < 90 (1), active-navigation sampling (2),
    erratic transitions (2).
    """
    name = "Speed Pattern Train"
    priority = 75
    family = RuleFamily.PATTERN

    def can_apply(self, ctx: DetectionContext) -> bool:
        cfg = ctx.cfg
        return (
            ctx.speed_valid
            and not ctx.at_train_station
            and not ctx.on_highway
            and cfg.train_pattern_min_speed_kmh <= ctx.current_speed <= cfg.train_pattern_max_speed_kmh
            and len(ctx.speed_history) >= cfg.pattern_min_samples
            and len(ctx.point_history) >= cfg.pattern_min_samples
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        distance = path_length(ctx.coords_history)
        duration = _window_duration_s(ctx)
        if distance < cfg.pattern_min_distance_m and duration < cfg.pattern_min_duration_s:
            return None

        stats = speed_variance(ctx.speed_history)
        straight = _straight(ctx)
        sustained = has_sustained_speed(
            ctx.mode_history,
            cfg.sustained_speed_kmh,
            int(cfg.sustained_duration_s * 1000),
            ctx.timestamp_ms,
        )
        transitions = speed_transitions(ctx.speed_history)

        train = car = 0
        if stats.cv < 0.12:
            train += 3
        elif stats.cv < 0.18:
            train += 2
        elif stats.cv < 0.25:
            train += 1
        else:
            car += 2
        if straight:
            train += 2
        else:
            car += 1
        if sustained:
            train += 2
        if ctx.current_speed >= 100:
            train += 1
        elif ctx.current_speed < 90:
            car += 1
        if ctx.gps.likely_mode == TransportMode.CAR:
            car += 2
        elif ctx.gps.pattern == BACKGROUND_TRACKING:
            train += 1
        if transitions.likely_mode == TransportMode.TRAIN:
            train += 2
        elif transitions.likely_mode == TransportMode.CAR:
            car += 2

        share = train / max(train + car, 1)
        meta = {
            "train_score": train,
            "car_score": car,
            "speed_cv": stats.cv,
            "straight": straight,
            "sustained": sustained,
            "gps_frequency": ctx.gps.pattern,
            "transitions": transitions.smoothness,
        }
        if train > car and share >= 0.65:
            return make_result(
                TransportMode.TRAIN,
                min(0.75 + (share - 0.65) * 0.5, 0.90),
                Reason.SPEED_PATTERN_TRAIN,
                f"Strong train-like patterns: CV={stats.cv:.3f}, straight={straight}, "
                f"smooth={transitions.smoothness}",
                **meta,
            )
        if car > train:
            return make_result(
                TransportMode.CAR,
                min(0.70 + (car - train) * 0.05, 0.85),
                Reason.SPEED_PATTERN_CAR,
                f"Car-like patterns: CV={stats.cv:.3f}, {transitions.smoothness} transitions",
                **meta,
            )
        return None


class SpeedPatternCarRule(DetectionRule):
    name = "Speed Pattern Car"
    priority = 74
    family = RuleFamily.PATTERN

    def can_apply(self, ctx: DetectionContext) -> bool:
        cfg = ctx.cfg
        return (
            ctx.speed_valid
            and not ctx.at_train_station
            and cfg.car_pattern_min_speed_kmh <= ctx.current_speed <= cfg.car_pattern_max_speed_kmh
            and len(ctx.speed_history) >= cfg.pattern_min_samples
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        stats = speed_variance(ctx.speed_history)
        if stats.cv <= ctx.cfg.car_pattern_min_cv:
            return None
        return make_result(
            TransportMode.CAR,
            0.85,
            Reason.SPEED_PATTERN_CAR,
            f"High speed variability indicates car travel (CV={stats.cv:.3f})",
            speed_cv=stats.cv,
            speed_range=stats.range,
        )


class StopPatternRule(DetectionRule):
    name = "Stop Pattern Analysis"
    priority = 68
    family = RuleFamily.PATTERN

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and len(ctx.point_history) >= ctx.cfg.pattern_min_samples
            and path_length(ctx.coords_history) >= ctx.cfg.stop_pattern_min_distance_m
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        stops = stop_pattern(ctx.point_history, ctx.cfg)
        if stops.confidence < ctx.cfg.stop_pattern_min_confidence or stops.likely_mode == TransportMode.UNKNOWN:
            return None
        modifier = ctx.gps.modifier(stops.likely_mode)
        return make_result(
            stops.likely_mode,
            max(0.1, min(0.95, stops.confidence + modifier)),
            Reason.STOP_PATTERN,
            f"Stop pattern indicates {stops.pattern}: {stops.stops_per_km:.2f} stops/km, "
            f"avg {stops.mean_stop_duration_s:.0f}s dwell",
            pattern=stops.pattern,
            stop_count=stops.stop_count,
            stops_per_km=stops.stops_per_km,
            mean_stop_duration_s=stops.mean_stop_duration_s,
            gps_frequency=ctx.gps.pattern,
            gps_modifier=modifier,
        )


class TrainSpeedWithoutStationRule(DetectionRule):
    """
    Train-plausible speed with no station in sight. Counts four signals
    (recent station visit, previous fix was train, train-like speed
    series, straight path) and needs two of them when there is station
    context or the window is long, three otherwise.
    """
    name = "Train Speed Without Station"
    priority = 66
    family = RuleFamily.PATTERN

    def can_apply(self, ctx: DetectionContext) -> bool:
        cfg = ctx.cfg
        return (
            ctx.speed_valid
            and not ctx.at_train_station
            and not ctx.on_highway
            and cfg.without_station_min_speed_kmh <= ctx.current_speed <= cfg.train_max_speed_kmh
            and len(ctx.mode_history) > 0
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        recent_station = ctx.has_recent_station()
        was_train = ctx.last_mode == TransportMode.TRAIN

        distance = path_length(ctx.coords_history)
        duration = _window_duration_s(ctx)
        long_journey = distance >= cfg.segment_min_distance_m or duration >= cfg.segment_min_duration_s
        if not (recent_station or was_train or long_journey):
            return None

        train_speed = has_train_like_speed(ctx.speed_history, cfg)
        straight = _straight(ctx)

        confidence = 0.6
        confidence += 0.1 if recent_station else 0.0
        confidence += 0.1 if was_train else 0.0
        confidence += 0.15 if train_speed else 0.0
        confidence += 0.15 if straight else 0.0

        positives = sum((recent_station, was_train, train_speed, straight))
        required = 2 if (recent_station or long_journey) else 3
        if positives < required:
            return None

        return make_result(
            TransportMode.TRAIN,
            min(confidence, 0.95),
            Reason.TRAIN_SPEED_WITHOUT_STATION,
            f"Train-like speed and movement pattern (CV: {speed_variance(ctx.speed_history).cv:.3f})",
            recent_station=recent_station,
            was_train=was_train,
            train_like_speed=train_speed,
            straight=straight,
            positive_signals=positives,
        )
