# tmd/analysis/engine.py

"""
Greedy priority rule engine.

Rules are sorted once, highest priority first (ties keep registration
order). For each fix the first applicable rule returning a result above
the acceptance threshold wins; when none does, the previous mode is kept
at low confidence, or `unknown` is returned for a fresh trajectory.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from tmd.analysis.config import DetectorConfig
from tmd.analysis.context import DetectionContext
from tmd.analysis.plausibility import is_physically_possible
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, make_result, safety_mode
from tmd.analysis.rules.continuity import (
    HighSpeedContinuityRule,
    ImpossibleTransitionRule,
    MinimumModeDurationRule,
    ModeContinuityFallbackRule,
    SpeedSimilarityRule,
)
from tmd.analysis.rules.geographic import AirportRule, HighwayOverrideRule, TrainStationRule
from tmd.analysis.rules.journey import (
    AirplaneJourneyContinuationRule,
    AirplaneJourneyEndRule,
    BothStationsDetectedRule,
    StartingStationOnlyRule,
    TrainJourneyContinuationRule,
    TrainJourneyEndRule,
    UnrealisticTrainSegmentRule,
)
from tmd.analysis.rules.patterns import (
    MultiSignalCombinationRule,
    SpeedPatternCarRule,
    SpeedPatternTrainRule,
    StopPatternRule,
    TrainSpeedWithoutStationRule,
)
from tmd.analysis.rules.physical import AccelerationValidationRule, PhysicalImpossibilityRule
from tmd.analysis.rules.speed import MultiPointSpeedRule, SpeedBracketRule
from tmd.analysis.types import DetectionResult, TransportMode
from tmd.utils.log import get_logger

logger = get_logger(__name__)


def default_rules() -> List[DetectionRule]:
    """
    Production rule set, in reference order (the engine sorts anyway).
    """
    return [
        # geographic overrides
        HighwayOverrideRule(),
        TrainStationRule(),
        AirportRule(),
        # physical safety net
        PhysicalImpossibilityRule(),
        # journeys
        BothStationsDetectedRule(),
        TrainJourneyEndRule(),
        AirplaneJourneyEndRule(),
        UnrealisticTrainSegmentRule(),
        StartingStationOnlyRule(),
        AirplaneJourneyContinuationRule(),
        TrainJourneyContinuationRule(),
        # physical validation, hysteresis
        AccelerationValidationRule(),
        MinimumModeDurationRule(),
        ImpossibleTransitionRule(),
        # patterns and similarity
        MultiSignalCombinationRule(),
        SpeedPatternTrainRule(),
        SpeedPatternCarRule(),
        HighSpeedContinuityRule(),
        StopPatternRule(),
        TrainSpeedWithoutStationRule(),
        SpeedSimilarityRule(),
        # speed brackets, continuity fallback
        MultiPointSpeedRule(),
        SpeedBracketRule(),
        ModeContinuityFallbackRule(),
    ]


class RuleEngine:
    """
    Evaluates a fixed, priority-ordered rule set against detection contexts.

    Parameters
    ----------
    rules
        Rules to evaluate; sorted once here by descending priority.
    cfg
        Supplies the acceptance threshold and fallback confidences.
    """
    def __init__(self, rules: Iterable[DetectionRule], cfg: Optional[DetectorConfig] = None) -> None:
        self.cfg = cfg or DetectorConfig.default()
        # sorted() is stable, so equal priorities keep registration order
        self.rules: Sequence[DetectionRule] = tuple(sorted(rules, key=lambda r: -r.priority))

    def evaluate(self, ctx: DetectionContext) -> DetectionResult:
        """
        Run the rules against `ctx` and always return a result.
        """
        for rule in self.rules:
            try:
                if not rule.can_apply(ctx):
                    continue
                result = rule.detect(ctx)
            except Exception:
                # a broken rule has no opinion; the rest still run
                logger.warning(
                    "Rule %r raised; skipping",
                    rule.name,
                    exc_info=True,
                    extra={"rule": rule.name, "timestamp_ms": ctx.timestamp_ms},
                )
                continue
            if result is None or result.confidence <= self.cfg.acceptance_threshold:
                continue

            logger.debug(
                "%s -> %s (%.2f) at t=%d", rule.name, result.mode, result.confidence, ctx.timestamp_ms
            )
            return self._guard(ctx, rule, result)

        return self._fallback(ctx)

    def _guard(self, ctx: DetectionContext, rule: DetectionRule, result: DetectionResult) -> DetectionResult:
        """
        Never hand back a mode the current speed rules out, unless the rule
        anchored it deliberately (platform dwell, boarding).
        """
        if (
            result.metadata.get("anchored")
            or not ctx.speed_valid
            or is_physically_possible(result.mode, ctx.current_speed, ctx.cfg.mode_limits)
        ):
            return result

        mode = safety_mode(ctx)
        logger.info(
            "%s proposed %s at %.0f km/h; overridden to %s",
            rule.name,
            result.mode,
            ctx.current_speed,
            mode,
            extra={"rule": rule.name, "mode": mode.value, "code": Reason.PHYSICALLY_IMPOSSIBLE.value},
        )
        return make_result(
            mode,
            1.0,
            Reason.PHYSICALLY_IMPOSSIBLE,
            f"{result.mode} impossible at {ctx.current_speed:.0f} km/h; switched to {mode}",
            overridden_rule=rule.name,
            overridden_mode=result.mode.value,
        )

    def _fallback(self, ctx: DetectionContext) -> DetectionResult:
        last = ctx.last_mode
        if last is not None and last != TransportMode.UNKNOWN:
            logger.debug("No rule applied at t=%d; keeping %s", ctx.timestamp_ms, last)
            return make_result(last, self.cfg.fallback_previous_confidence, Reason.FALLBACK_PREVIOUS_MODE)
        return make_result(TransportMode.UNKNOWN, self.cfg.fallback_unknown_confidence, Reason.UNKNOWN)
