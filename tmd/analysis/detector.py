# tmd/analysis/detector.py

"""
Entry points of the detection engine.

`ModeDetector` wires context building, rule evaluation and history
updates for a single fix. `TrajectoryRegistry` keeps one state per
trajectory id and serialises access to it; `classify_tracks` fans whole
tracks out over a thread pool.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from tmd.analysis.config import DetectorConfig
from tmd.analysis.context import DetectionContext, build_context
from tmd.analysis.engine import RuleEngine, default_rules
from tmd.analysis.errors import OutOfOrderPointError, TmdError
from tmd.analysis.rules.base import DetectionRule
from tmd.analysis.state import TrajectoryState
from tmd.analysis.types import DetectionResult, GeoTag, Point
from tmd.utils.geo import haversine, is_valid_coordinate
from tmd.utils.log import get_logger
from tmd.utils.validate import ClassifiedPoint

logger = get_logger(__name__)


def with_derived_speed(previous: Optional[Point], point: Point) -> Point:
    """
    Fill in a missing speed from the great-circle distance to the
    previous fix. Points that already carry a speed are returned as is.
    """
    if point.speed_kmh is not None or previous is None:
        return point
    dt_s = (point.timestamp_ms - previous.timestamp_ms) / 1000.0
    if dt_s <= 0 or not (is_valid_coordinate(*previous.coords) and is_valid_coordinate(*point.coords)):
        return point
    return replace(point, speed_kmh=haversine(previous.coords, point.coords) / dt_s * 3.6)


class ModeDetector:
    """
    Classifies GPS fixes into transport modes.

    Parameters
    ----------
    cfg
        Policy knobs; defaults to `DetectorConfig.default()`.
    rules
        Rule set; defaults to `default_rules()`.
    """
    def __init__(
        self,
        cfg: Optional[DetectorConfig] = None,
        rules: Optional[Iterable[DetectionRule]] = None,
    ) -> None:
        self.cfg = cfg or DetectorConfig.default()
        self.engine = RuleEngine(default_rules() if rules is None else rules, self.cfg)

    def new_state(self) -> TrajectoryState:
        return TrajectoryState(self.cfg.history_window)

    def _run(
        self,
        previous: Optional[Point],
        current: Point,
        elapsed_s: Optional[float],
        geotag: Optional[GeoTag],
        state: TrajectoryState,
        trajectory_id: Optional[str] = None,
    ) -> tuple[DetectionContext, DetectionResult]:
        last_ts = state.last_timestamp_ms
        if last_ts is not None and current.timestamp_ms < last_ts:
            raise OutOfOrderPointError(trajectory_id, last_ts, current.timestamp_ms)

        ctx = build_context(previous, current, elapsed_s, geotag, state, self.cfg)
        result = self.engine.evaluate(ctx)
        return ctx, state.record(ctx, result)

    def detect_point(
        self,
        previous: Optional[Point],
        current: Point,
        elapsed_s: Optional[float],
        geotag: Optional[GeoTag],
        state: TrajectoryState,
    ) -> DetectionResult:
        """
        Classify `current` and update `state`.

        Parameters
        ----------
        previous
            Fix before `current`; None uses the state's last fix.
        current
            Fix to classify.
        elapsed_s
            Seconds since `previous`; None derives it from timestamps.
        geotag
            Normalised reverse-geocode tag; overrides one on the point.
        state
            Trajectory state; mutated.

        Raises
        ------
        OutOfOrderPointError
            If `current` is older than the last fix recorded in `state`.
        """
        return self._run(previous, current, elapsed_s, geotag, state)[1]

    def classify_track(
        self,
        points: Iterable[Point],
        state: Optional[TrajectoryState] = None,
        trajectory_id: Optional[str] = None,
    ) -> List[ClassifiedPoint]:
        """
        Classify a time-ordered track, deriving missing speeds from
        consecutive fixes. A fresh state is used unless one is given.
        """
        state = state if state is not None else self.new_state()
        out: List[ClassifiedPoint] = []
        previous = state.last_point
        for raw in points:
            point = with_derived_speed(previous, raw)
            ctx, result = self._run(previous, point, None, None, state, trajectory_id)
            out.append(ClassifiedPoint.from_result(point, ctx.current_speed, result))
            if is_valid_coordinate(*point.coords):
                previous = point
        return out


class TrajectoryRegistry:
    """
    Per-trajectory states behind per-trajectory locks.

    Fixes of one trajectory are processed strictly one at a time; fixes
    of different trajectories may be processed concurrently.
    """
    def __init__(self, detector: ModeDetector) -> None:
        self.detector = detector
        self._states: Dict[str, TrajectoryState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _slot(self, trajectory_id: str) -> tuple[TrajectoryState, threading.Lock]:
        with self._guard:
            if trajectory_id not in self._states:
                self._states[trajectory_id] = self.detector.new_state()
                self._locks[trajectory_id] = threading.Lock()
            return self._states[trajectory_id], self._locks[trajectory_id]

    def process(self, trajectory_id: str, point: Point) -> ClassifiedPoint:
        state, lock = self._slot(trajectory_id)
        with lock:
            point = with_derived_speed(state.last_point, point)
            ctx, result = self.detector._run(None, point, None, None, state, trajectory_id)
        return ClassifiedPoint.from_result(point, ctx.current_speed, result)

    def process_many(self, trajectory_id: str, points: Sequence[Point]) -> List[ClassifiedPoint]:
        state, lock = self._slot(trajectory_id)
        with lock:
            return self.detector.classify_track(points, state, trajectory_id)

    def reset(self, trajectory_id: str) -> bool:
        with self._guard:
            state, lock = self._states.get(trajectory_id), self._locks.get(trajectory_id)
        if state is None:
            return False
        with lock:
            state.reset()
        return True

    def drop(self, trajectory_id: str) -> bool:
        with self._guard:
            self._locks.pop(trajectory_id, None)
            return self._states.pop(trajectory_id, None) is not None

    def state(self, trajectory_id: str) -> Optional[TrajectoryState]:
        with self._guard:
            return self._states.get(trajectory_id)

    def __contains__(self, trajectory_id: str) -> bool:
        with self._guard:
            return trajectory_id in self._states

    def __len__(self) -> int:
        with self._guard:
            return len(self._states)


def classify_tracks(
    detector: ModeDetector,
    tracks: Mapping[str, Sequence[Point]],
    max_workers: Optional[int] = None,
) -> Dict[str, List[ClassifiedPoint]]:
    """
    Classify independent tracks in parallel, each from a fresh state.

    Returns
    -------
    dict
        Classified points per track id.
    """
    logger.info("Classifying %d tracks with %s workers", len(tracks), max_workers or "default")
    results: Dict[str, List[ClassifiedPoint]] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_track = {
            executor.submit(detector.classify_track, points, None, tid): tid
            for tid, points in tracks.items()
        }
        for future in as_completed(future_to_track):
            tid = future_to_track[future]
            try:
                results[tid] = future.result()
            except TmdError as exc:
                logger.error("Track %s failed: %s", tid, exc, extra={"trajectory_id": tid})
                raise
            logger.debug("Track %s: %d points classified", tid, len(results[tid]))
    # preserve the caller's track order
    return {tid: results[tid] for tid in tracks}
