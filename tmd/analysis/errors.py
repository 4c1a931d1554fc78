# tmd/analysis/errors.py

"""
Exceptions raised at the edges of the detection engine.

The rule engine itself never raises for bad data; these cover
configuration, input files and caller contract violations.
"""


class TmdError(Exception):
    """Base class for all tmd errors."""


class ConfigError(TmdError):
    """A configuration file or override could not be applied."""


class TrackParseError(TmdError):
    """An input track file could not be read."""


class OutOfOrderPointError(TmdError):
    """
    A point arrived with a timestamp earlier than the last point
    processed for the same trajectory.
    """
    def __init__(self, trajectory_id: str | None, last_ts: int, ts: int) -> None:
        self.trajectory_id = trajectory_id
        self.last_ts = last_ts
        self.ts = ts
        label = trajectory_id if trajectory_id is not None else "<anonymous>"
        super().__init__(
            f"trajectory {label}: timestamp {ts} precedes last processed {last_ts}"
        )
