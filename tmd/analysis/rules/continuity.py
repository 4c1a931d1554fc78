# tmd/analysis/rules/continuity.py

from __future__ import annotations

from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.plausibility import is_transition_possible
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, bracket_mode, make_result, possible
from tmd.analysis.types import DetectionResult, TransportMode
from tmd.utils.geo import haversine


def dominant_mode(ctx: DetectionContext, window: int) -> Optional[TransportMode]:
    """
    Most frequent mode among the last `window` history entries; ties go
    to the most recent of the tied modes.
    """
    recent = [e.mode for e in ctx.mode_history[-window:] if e.mode != TransportMode.UNKNOWN]
    if not recent:
        return None
    counts: dict[TransportMode, int] = {}
    for mode in reversed(recent):
        counts[mode] = counts.get(mode, 0) + 1
    # dicts keep insertion order, so max() resolves ties towards the newest
    return max(counts, key=counts.get)


class MinimumModeDurationRule(DetectionRule):
    """
    Hysteresis: hold the recently dominant mode against a speed-only
    switch unless the dominant mode is impossible at the new speed, the
    fix carries a geographic tag, or the last few fixes actually moved.
    """
    name = "Minimum Mode Duration"
    priority = 80
    family = RuleFamily.CONTINUITY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and len(ctx.mode_history) >= 2

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        dominant = dominant_mode(ctx, cfg.hysteresis_dominant_window)
        candidate = bracket_mode(ctx)
        if dominant is None or candidate == dominant:
            return None
        if not possible(ctx, dominant):
            return None
        if not ctx.geotag.is_empty:
            return None

        recent = ctx.point_history[-cfg.hysteresis_points:]
        span = haversine(recent[0].coords, recent[-1].coords) if len(recent) >= 2 else 0.0
        if span >= cfg.hysteresis_min_distance_m:
            return None

        return make_result(
            dominant,
            0.65,
            Reason.MIN_DURATION_NOT_MET,
            f"Holding {dominant}: switch to {candidate} not sustained ({span:.0f} m over "
            f"{len(recent)} points)",
            candidate_mode=candidate.value,
            span_m=span,
        )


class ImpossibleTransitionRule(DetectionRule):
    """
    Undo the last classification when it formed a transition that cannot
    happen directly (walking straight into an airplane, a bicycle turning
    into a train). The earlier mode is restored, and the offending history
    entry re-scored, only if the earlier mode fits the current speed.
    """
    name = "Impossible Transition"
    priority = 79
    family = RuleFamily.CONTINUITY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and len(ctx.mode_history) >= 2

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        before, after = ctx.mode_history[-2].mode, ctx.mode_history[-1].mode
        if is_transition_possible(before, after):
            return None
        if not possible(ctx, before):
            return None
        return make_result(
            before,
            0.8,
            Reason.IMPOSSIBLE_TRANSITION,
            f"Impossible transition {before} -> {after}; reverted to {before}",
            reverted_mode=after.value,
            revert_previous=True,
        )


class HighSpeedContinuityRule(DetectionRule):
    name = "High Speed Continuity"
    priority = 73
    family = RuleFamily.CONTINUITY

    _KEEP = (TransportMode.CAR, TransportMode.TRAIN, TransportMode.AIRPLANE)

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and ctx.current_speed >= ctx.cfg.high_speed_continuity_kmh
            and ctx.last_mode in self._KEEP
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        last = ctx.last_mode
        if not possible(ctx, last):
            return None
        return make_result(
            last,
            0.85,
            Reason.HIGH_SPEED_CONTINUITY,
            f"Maintaining {last} at {ctx.current_speed:.0f} km/h",
        )


class SpeedSimilarityRule(DetectionRule):
    name = "Speed Similarity"
    priority = 64
    family = RuleFamily.CONTINUITY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and ctx.previous_speed is not None
            and ctx.last_mode not in (None, TransportMode.STATIONARY, TransportMode.UNKNOWN)
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        last = ctx.last_mode
        delta = abs(ctx.current_speed - ctx.previous_speed)
        if delta >= ctx.cfg.similarity_max_delta_kmh or not possible(ctx, last):
            return None
        return make_result(
            last,
            0.7,
            Reason.SPEED_SIMILARITY,
            f"Speed similar to previous ({delta:.0f} km/h change), maintaining {last}",
            speed_delta=delta,
        )


class ModeContinuityFallbackRule(DetectionRule):
    """
    The current speed is unusable; the best guess is that nothing changed.
    """
    name = "Mode Continuity Fallback"
    priority = 15
    family = RuleFamily.CONTINUITY

    def can_apply(self, ctx: DetectionContext) -> bool:
        return not ctx.speed_valid and ctx.last_mode not in (None, TransportMode.UNKNOWN)

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        return make_result(ctx.last_mode, 0.55, Reason.MODE_CONTINUITY)
