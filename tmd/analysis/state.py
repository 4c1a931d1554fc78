# tmd/analysis/state.py

"""
Mutable per-trajectory history. `TrajectoryState.record` is the only
place it changes: after the engine has decided a fix, the fix, its speed
and its classification are appended to bounded windows, the journey is
advanced, and earlier classifications are re-scored when the decision
calls for it.
"""

from __future__ import annotations

from collections import deque
from dataclasses import replace
from typing import Deque, Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.journey import ENDED, STARTED, advance_journey
from tmd.analysis.plausibility import is_valid_speed
from tmd.analysis.types import (
    DetectionResult,
    JourneyContext,
    ModeHistoryEntry,
    Point,
    StationVisit,
    TransportMode,
)
from tmd.utils.log import get_logger

logger = get_logger(__name__)

DEFAULT_HISTORY = 20


class TrajectoryState:
    """
    History windows and journey state for one trajectory.

    Parameters
    ----------
    max_history
        Bound on the point, speed and mode windows (oldest evicted first).
    """
    def __init__(self, max_history: int = DEFAULT_HISTORY) -> None:
        self.max_history = max_history
        self.reset()

    def reset(self) -> None:
        self.points: Deque[Point] = deque(maxlen=self.max_history)
        self.speeds: Deque[float] = deque(maxlen=self.max_history)
        self.modes: Deque[ModeHistoryEntry] = deque(maxlen=self.max_history)
        self.journey: Optional[JourneyContext] = None
        self.last_station: Optional[StationVisit] = None
        self.last_airport: Optional[StationVisit] = None
        self.last_point: Optional[Point] = None
        self.last_timestamp_ms: Optional[int] = None

    def __len__(self) -> int:
        return len(self.modes)

    @property
    def last_mode(self) -> Optional[TransportMode]:
        return self.modes[-1].mode if self.modes else None

    def record(self, ctx: DetectionContext, result: DetectionResult) -> DetectionResult:
        """
        Apply the accepted result for `ctx.point`.

        Returns the result, with the number of re-scored history entries
        added to its metadata when any were changed.
        """
        point = ctx.point
        now = point.timestamp_ms
        rescored = self._rescore(ctx, result)

        if ctx.position_valid:
            self.points.append(point)
            self.last_point = point
        if is_valid_speed(ctx.current_speed):
            self.speeds.append(ctx.current_speed)
        self.modes.append(ModeHistoryEntry(
            mode=result.mode,
            timestamp_ms=now,
            speed_kmh=ctx.current_speed,
            lat=point.lat,
            lng=point.lng,
            confidence=result.confidence,
            reason=result.reason,
        ))
        self.last_timestamp_ms = now

        journey, transition = advance_journey(self.journey, ctx, result)
        if transition == STARTED:
            logger.info(
                "%s journey started at t=%d from %s",
                journey.type.value,
                journey.start_time_ms,
                journey.start_station or journey.start_airport or "no station",
            )
        elif transition == ENDED:
            logger.info("%s journey ended at t=%d: %s", self.journey.type.value, now, result.reason)
        self.journey = journey

        if ctx.at_train_station:
            self.last_station = StationVisit(ctx.station_name, now, point.lat, point.lng)
        if ctx.at_airport:
            self.last_airport = StationVisit(ctx.airport_name, now, point.lat, point.lng)

        if rescored:
            result = replace(result, metadata={**result.metadata, "rescored": rescored})
        return result

    def _rescore(self, ctx: DetectionContext, result: DetectionResult) -> int:
        """
        Rewrite earlier history entries in place of the new decision.

        - retroactive train start: entries inside the judged window become train
        - reverted impossible transition: the last entry takes the restored mode
        - discarded train segment: its train entries take the restored mode
        """
        if result.metadata.get("retroactive") and ctx.point_history:
            since = ctx.point_history[0].timestamp_ms
            count = 0
            for i, entry in enumerate(list(self.modes)):
                if entry.timestamp_ms >= since and entry.mode != TransportMode.TRAIN:
                    self.modes[i] = replace(entry, mode=TransportMode.TRAIN, reason=result.reason)
                    count += 1
            if count:
                logger.info("Re-scored %d history entries to train", count)
            return count

        since = result.metadata.get("revert_since")
        if since is not None:
            count = 0
            for i, entry in enumerate(list(self.modes)):
                if entry.timestamp_ms >= since and entry.mode == TransportMode.TRAIN:
                    self.modes[i] = replace(entry, mode=result.mode, reason=result.reason)
                    count += 1
            if count:
                logger.info("Re-scored %d train entries to %s", count, result.mode.value)
            return count

        if result.metadata.get("revert_previous") and self.modes:
            last = self.modes[-1]
            if last.mode != result.mode:
                self.modes[-1] = replace(last, mode=result.mode, reason=result.reason)
                return 1
        return 0
