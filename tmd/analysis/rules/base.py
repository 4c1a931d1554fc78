# tmd/analysis/rules/base.py

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.plausibility import is_physically_possible, speed_bracket
from tmd.analysis.reasons import Reason, reason_label
from tmd.analysis.types import DetectionResult, TransportMode


class RuleFamily(str, Enum):
    GEOGRAPHIC = "geographic"
    PHYSICAL = "physical"
    JOURNEY = "journey"
    CONTINUITY = "continuity"
    PATTERN = "pattern"
    SPEED = "speed"


class DetectionRule(ABC):
    """
    One independent heuristic.

    Subclasses set `name`, `priority` (higher runs first) and `family` as
    class attributes. `can_apply` is a cheap gate; `detect` returns a
    result or None for "no opinion". Neither may mutate the context.
    """
    name: str = ""
    priority: int = 0
    family: RuleFamily = RuleFamily.SPEED

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid

    @abstractmethod
    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} priority={self.priority}>"


def make_result(
    mode: TransportMode,
    confidence: float,
    code: Reason,
    reason: Optional[str] = None,
    **metadata: Any,
) -> DetectionResult:
    """Build a result, defaulting the reason text to the code's label."""
    return DetectionResult(
        mode=mode,
        confidence=confidence,
        reason=reason or reason_label(code),
        code=code,
        metadata=metadata,
    )


def bracket_mode(ctx: DetectionContext, speed: Optional[float] = None) -> TransportMode:
    return speed_bracket(ctx.current_speed if speed is None else speed, ctx.cfg.speed_brackets)


def possible(ctx: DetectionContext, mode: TransportMode, speed: Optional[float] = None) -> bool:
    return is_physically_possible(mode, ctx.current_speed if speed is None else speed, ctx.cfg.mode_limits)


def implied_mode(ctx: DetectionContext) -> Optional[TransportMode]:
    """Mode the current fix's location implies on its own, if any."""
    if ctx.at_train_station:
        return TransportMode.TRAIN
    if ctx.on_highway:
        return TransportMode.CAR
    if ctx.at_airport:
        return TransportMode.AIRPLANE
    return None


def safety_mode(ctx: DetectionContext) -> TransportMode:
    """
    Replacement for an impossible mode: the geographically implied mode
    when it is itself possible, else the speed bracket.
    """
    mode = implied_mode(ctx)
    if mode is not None and possible(ctx, mode):
        return mode
    return bracket_mode(ctx)
