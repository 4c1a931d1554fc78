# tmd/analysis/rules/geographic.py

"""
Rules driven by the reverse-geocode tag of the current fix. These sit at
the top of the evaluation order: a motorway, a platform or a runway says
more about the mode than any speed statistic.
"""

from __future__ import annotations

from typing import Optional

from tmd.analysis.context import DetectionContext
from tmd.analysis.journey import retroactive_segment
from tmd.analysis.reasons import Reason
from tmd.analysis.rules.base import DetectionRule, RuleFamily, make_result
from tmd.analysis.types import DetectionResult, TransportMode


class HighwayOverrideRule(DetectionRule):
    name = "Highway Override"
    priority = 100
    family = RuleFamily.GEOGRAPHIC

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and ctx.on_highway and ctx.current_speed >= ctx.cfg.highway_min_speed_kmh

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        return make_result(
            TransportMode.CAR,
            ctx.cfg.highway_confidence,
            Reason.HIGHWAY_OR_MOTORWAY,
            f"On motorway at {ctx.current_speed:.0f} km/h",
            speed=ctx.current_speed,
        )


class TrainStationRule(DetectionRule):
    """
    At a station: boarding/alighting at walking pace, passing through or
    departing at train speed. When no journey is running and the window
    before the station looks like a steady train ride, the ride is
    attributed to train retroactively (final station only).

    Stations other than the running journey's starting station are left
    to the journey rules, which decide between arrival and pass-through.
    """
    name = "Train Station"
    priority = 98
    family = RuleFamily.GEOGRAPHIC

    def can_apply(self, ctx: DetectionContext) -> bool:
        if not (ctx.speed_valid and ctx.at_train_station):
            return False
        journey = ctx.journey_of(TransportMode.TRAIN)
        if journey is None:
            return True
        return ctx.station_name is not None and ctx.station_name == journey.start_station

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        cfg = ctx.cfg
        station = ctx.station_name or "unnamed station"
        fast = ctx.current_speed >= cfg.station_train_speed_kmh

        segment = None
        if ctx.journey is None or ctx.journey.type != TransportMode.TRAIN:
            segment = retroactive_segment(ctx)

        if segment is not None and segment.qualifies:
            return make_result(
                TransportMode.TRAIN,
                cfg.station_train_confidence if fast else cfg.station_boarding_confidence,
                Reason.FINAL_STATION_ONLY,
                f"Final train station ({station}) reached after a steady, straight segment; "
                f"assuming train travel before this point",
                station=ctx.station_name,
                retroactive=True,
                anchored=not fast,
                journey_complete=not fast,
                **segment.as_metadata(),
            )

        if fast:
            return make_result(
                TransportMode.TRAIN,
                cfg.station_train_confidence,
                Reason.TRAIN_STATION_AND_SPEED,
                f"At train station ({station}) at {ctx.current_speed:.0f} km/h",
                station=ctx.station_name,
            )

        return make_result(
            TransportMode.TRAIN,
            cfg.station_boarding_confidence,
            Reason.TRAIN_STATION_BOARDING,
            f"At train station ({station}), boarding or alighting",
            station=ctx.station_name,
            anchored=True,
        )


class AirportRule(DetectionRule):
    name = "Airport"
    priority = 97
    family = RuleFamily.GEOGRAPHIC

    def can_apply(self, ctx: DetectionContext) -> bool:
        return ctx.speed_valid and ctx.at_airport and ctx.current_speed >= ctx.cfg.airport_min_speed_kmh

    def detect(self, ctx: DetectionContext) -> Optional[DetectionResult]:
        airport = ctx.airport_name or "unnamed airport"
        return make_result(
            TransportMode.AIRPLANE,
            ctx.cfg.airport_confidence,
            Reason.AIRPORT_AND_PLANE_SPEED,
            f"At airport ({airport}) at {ctx.current_speed:.0f} km/h",
            airport=ctx.airport_name,
        )
