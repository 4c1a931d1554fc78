import logging
from typing import Optional

from tmd.analysis.config import DetectorConfig
from tmd.analysis.detector import ModeDetector
from tmd.analysis.engine import RuleEngine, default_rules
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, make_result
from tmd.analysis.types import DetectionResult, Point, TransportMode as M

from conftest import T0, follow


class Fixed(DetectionRule):
    """Always proposes the same result."""
    def __init__(self, name, priority, mode, confidence, **metadata):
        self.name = name
        self.priority = priority
        self.mode = mode
        self.confidence = confidence
        self.metadata = metadata

    def can_apply(self, ctx) -> bool:
        return True

    def detect(self, ctx) -> Optional[DetectionResult]:
        return make_result(self.mode, self.confidence, Reason.SPEED_BRACKET_MATCH, self.name, **self.metadata)


class FirstFixOnly(Fixed):
    def can_apply(self, ctx) -> bool:
        return not ctx.mode_history


class Broken(Fixed):
    def detect(self, ctx):
        raise RuntimeError("boom")


def _point(speed=50.0):
    return Point(52.0, 13.0, T0, speed)


def _run(rules, *points):
    detector = ModeDetector(rules=rules)
    state = detector.new_state()
    return [detector.detect_point(None, p, None, None, state) for p in points]


def test_default_rules_are_sorted_by_priority():
    engine = RuleEngine(default_rules())
    priorities = [r.priority for r in engine.rules]
    assert priorities == sorted(priorities, reverse=True)
    assert engine.rules[0].name == "Highway Override"
    assert engine.rules[-1].name == "Mode Continuity Fallback"
    assert len({r.name for r in engine.rules}) == len(engine.rules) == 24


def test_highest_priority_wins():
    [result] = _run([Fixed("low", 10, M.CAR, 0.9), Fixed("high", 20, M.CYCLING, 0.9)], _point(20))
    assert result.reason == "high"


def test_ties_keep_registration_order():
    [result] = _run([Fixed("first", 10, M.CAR, 0.9), Fixed("second", 10, M.CAR, 0.9)], _point())
    assert result.reason == "first"


def test_threshold_is_strict():
    [result] = _run([Fixed("half", 20, M.WALKING, 0.5), Fixed("next", 10, M.CAR, 0.51)], _point())
    assert result.reason == "next"


def test_raising_rule_is_skipped(caplog):
    with caplog.at_level(logging.WARNING, logger="tmd.analysis.engine"):
        [result] = _run([Broken("broken", 20, M.WALKING, 0.9), Fixed("ok", 10, M.CAR, 0.9)], _point())
    assert result.reason == "ok"
    [record] = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert record.getMessage() == "Rule 'broken' raised; skipping"
    # formatted lazily, with the rule attached for the JSON journal
    assert record.args == ("broken",)
    assert record.rule == "broken"


def test_fallback_unknown_then_previous_mode():
    first = _point()
    second = follow(first, 50)
    results = _run([FirstFixOnly("seed", 10, M.CAR, 0.9)], first, second)
    assert results[0].mode == M.CAR
    assert results[1].mode == M.CAR
    assert results[1].confidence == 0.2
    assert results[1].code == Reason.FALLBACK_PREVIOUS_MODE

    [empty] = _run([], first)
    assert empty.mode == M.UNKNOWN
    assert empty.confidence == 0.1
    assert empty.code == Reason.UNKNOWN


def test_guard_replaces_impossible_mode():
    [result] = _run([Fixed("bad", 10, M.WALKING, 0.9)], _point(100))
    assert result.mode == M.CAR
    assert result.confidence == 1.0
    assert result.code == Reason.PHYSICALLY_IMPOSSIBLE
    assert result.metadata["overridden_rule"] == "bad"


def test_guard_respects_anchored_results():
    [result] = _run([Fixed("dwell", 10, M.TRAIN, 0.7, anchored=True)], _point(3))
    assert result.mode == M.TRAIN
    assert result.confidence == 0.7


def test_invalid_speed_on_fresh_trajectory_is_unknown(detector):
    result = detector.detect_point(None, _point(-4.0), None, None, detector.new_state())
    assert result.mode == M.UNKNOWN


def test_custom_threshold():
    cfg = DetectorConfig.default().with_overrides({"acceptance_threshold": 0.8})
    detector = ModeDetector(cfg, rules=[Fixed("weak", 20, M.WALKING, 0.7), Fixed("strong", 10, M.CAR, 0.85)])
    result = detector.detect_point(None, _point(), None, None, detector.new_state())
    assert result.reason == "strong"
