# tmd/analysis/rules/physical.py

from __future__ import annotations

from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.plausibility import is_acceleration_possible, limits_for
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, bracket_mode, make_result, safety_mode
from tmd.analysis.types import DetectionResult, TransportMode, JOURNEY_MODES


class PhysicalImpossibilityRule(DetectionRule):
    """
    Safety net: the previous mode cannot produce the current speed.

    Exceeding a mode's maximum always triggers. Falling below a minimum
    only matters for the journey modes while no journey of that mode is
    running; a moving train or plane that slows down is the journey
    rules' business, and slower modes legitimately stop.
    """
    name = "Physical Impossibility"
    priority = 95
    family = RuleFamily.PHYSICAL

    def can_apply(self, ctx: DetectionContext) -> bool:
        return (
            ctx.speed_valid
            and ctx.last_mode is not None
            and ctx.last_mode != TransportMode.UNKNOWN
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        last = ctx.last_mode
        lim = limits_for(last, ctx.cfg.mode_limits)
        if lim is None:
            return None
        speed = ctx.current_speed

        too_fast = speed > lim.max_speed_kmh
        too_slow = (
            speed < lim.min_speed_kmh
            and speed > 0
            and last in JOURNEY_MODES
            and ctx.journey_of(last) is None
        )
        if not (too_fast or too_slow):
            return None

        mode = safety_mode(ctx)
        if mode == last:
            return None
        return make_result(
            mode,
            1.0,
            Reason.PHYSICALLY_IMPOSSIBLE,
            f"{last} impossible at {speed:.0f} km/h; switched to {mode}",
            previous_mode=last.value,
            speed=speed,
        )


class AccelerationValidationRule(DetectionRule):
    """
    The speed change since the last fix is beyond what the previous mode
    can accelerate or brake. Only short gaps are judged; over a minute
    anything can happen.
    """
    name = "Acceleration Validation"
    priority = 84
    family = RuleFamily.PHYSICAL

    def can_apply(self, ctx: DetectionContext) -> bool:
        last = ctx.last_mode
        return (
            ctx.speed_valid
            and ctx.previous_speed is not None
            and 0 < ctx.elapsed_s < ctx.cfg.acceleration_window_s
            and last is not None
            and last != TransportMode.UNKNOWN
            and ctx.journey_of(last) is None
        )

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        last = ctx.last_mode
        delta = ctx.current_speed - ctx.previous_speed
        if is_acceleration_possible(last, delta, ctx.elapsed_s, ctx.cfg.mode_limits):
            return None
        mode = bracket_mode(ctx)
        if mode == last or mode == TransportMode.UNKNOWN:
            return None
        accel = abs(delta) / ctx.elapsed_s
        return make_result(
            mode,
            0.95,
            Reason.ACCELERATION_IMPOSSIBLE,
            f"{last} cannot change speed by {accel:.1f} km/h/s; switched to {mode}",
            previous_mode=last.value,
            acceleration_kmh_per_s=accel,
        )
