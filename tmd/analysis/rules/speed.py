# tmd/analysis/rules/speed.py

from __future__ import annotations

from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.plausibility import is_valid_speed
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, bracket_mode, make_result
from tmd.analysis.types import DetectionResult, TransportMode


class MultiPointSpeedRule(DetectionRule):
    """Bracket of the smoothed multi-point speed."""
    name = "Multi-Point Speed"
    priority = 55
    family = RuleFamily.SPEED

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and is_valid_speed(ctx.rolling_average_speed)

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        mode = bracket_mode(ctx, ctx.rolling_average_speed)
        if mode == TransportMode.UNKNOWN:
            return None
        stable = len(ctx.speed_history) >= 3
        return make_result(
            mode,
            0.8 if stable else 0.6,
            Reason.MULTI_POINT_SPEED_STABLE,
            f"Smoothed speed {ctx.rolling_average_speed:.1f} km/h over {len(ctx.point_history)} points",
            rolling_average_speed=ctx.rolling_average_speed,
        )


class SpeedBracketRule(DetectionRule):
    name = "Speed Bracket"
    priority = 50
    family = RuleFamily.SPEED

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        mode = bracket_mode(ctx)
        if mode == TransportMode.UNKNOWN:
            return None
        return make_result(
            mode,
            0.6,
            Reason.SPEED_BRACKET_MATCH,
            f"Speed {ctx.current_speed:.1f} km/h matches {mode} bracket",
        )
