# tmd/utils/log.py

"""
Logging for tmd.

Every `tmd.*` logger prints to the console through Rich. Runs of
`tmd classify` are additionally journaled as one JSON object per line to
`{cwd}/classify.log`, so a batch over many tracks can be grepped by
trajectory or rule afterwards.

Callers attach detection context with `extra=`, e.g.

    logger.info("overridden", extra={"rule": rule.name, "mode": "car"})

and the JSON journal carries those keys alongside the message.
"""

import logging
import sys
import json
from pathlib import Path

from rich.logging import RichHandler

# CLI commands whose runs are also journaled to {cwd}/{command}.log
FILE_LOGGED_COMMANDS = ("classify",)

# `extra=` keys copied into JSON records when present
CONTEXT_FIELDS = ("trajectory_id", "rule", "mode", "code", "timestamp_ms")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record: time, level, logger, message, then any
    detection context the caller attached.
    """
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def journal_path(argv: list[str] | None = None) -> Path | None:
    """
    Where the JSON journal goes for this invocation, or None when the
    command is not journaled.
    """
    argv = sys.argv if argv is None else argv
    # first non-flag argument is the subcommand (`tmd -v classify ...`)
    command = next((a for a in argv[1:] if not a.startswith("-")), None)
    if command not in FILE_LOGGED_COMMANDS:
        return None
    return Path.cwd() / f"{command}.log"


def _console_handler(level: int | str) -> logging.Handler:
    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setLevel(level)
    return handler


def _journal_handler(path: Path, level: int | str) -> logging.Handler:
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def get_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """
    Return the logger `name`, attaching tmd's handlers on first use.

    Parameters
    ----------
    name
        Logger name (typically __name__).
    level
        Log level (int or string), defaults to INFO.

    Returns
    -------
    logging.Logger
        Logger with a Rich console handler and, for journaled commands,
        a JSON file handler.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        logger.addHandler(_console_handler(level))
        path = journal_path()
        if path is not None:
            logger.addHandler(_journal_handler(path, level))

    return logger


def set_level(level: int | str) -> None:
    """
    Change the level of every tmd logger and its handlers (used by `--verbose`).
    """
    for name, obj in logging.Logger.manager.loggerDict.items():
        if not name.startswith("tmd") or not isinstance(obj, logging.Logger):
            continue
        obj.setLevel(level)
        for handler in obj.handlers:
            handler.setLevel(level)
