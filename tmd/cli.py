#!/usr/bin/env python3
"""
CLI entry point for the tmd transport mode detection engine.

Defines the following commands:
  tmd classify <file> [--format csv|geojson|json] [--out FILE] [--strict] [--config FILE]
  tmd reasons
  tmd serve [--port 8000]
  tmd version
"""

import json
import sys
from argparse import ArgumentParser, Namespace
from collections import Counter
from importlib.metadata import PackageNotFoundError, version as _get_version

import uvicorn

from tmd.utils.log import get_logger, set_level
from tmd.server import create_app
from tmd.parsers import track
from tmd.analysis.config import DetectorConfig
from tmd.analysis.detector import ModeDetector
from tmd.analysis.errors import TmdError
from tmd.analysis.reasons import REASON_LABELS

logger = get_logger(__name__)


def load_config(strict: bool, config_path: str | None) -> DetectorConfig:
    """
    Build the detector config from a preset and an optional JSON override file.
    """
    base = DetectorConfig.strict() if strict else DetectorConfig.default()
    if config_path:
        return DetectorConfig.from_file(config_path, base=base)
    return base


def classify(
    file_path: str,
    fmt: str | None,
    out: str | None,
    strict: bool,
    config_path: str | None,
) -> None:
    """
    Classify every fix of a track file and write the result as a JSON array.

    Parameters
    ----------
    file_path
        Path to a `.csv`, `.geojson` or `.json` track.
    fmt
        Track format; inferred from the suffix when omitted.
    out
        Output file; stdout when omitted.
    strict
        Use the strict preset (longer train segments, lower speed variance).
    config_path
        Optional JSON file overriding individual config fields.
    """
    logger.info("Classify: file=%s, format=%s, strict=%s", file_path, fmt or "auto", strict)
    cfg = load_config(strict, config_path)
    points = [p.to_point() for p in track.parse_track(file_path, fmt)]
    classified = ModeDetector(cfg).classify_track(points, trajectory_id=file_path)

    payload = json.dumps([c.model_dump() for c in classified], indent=2)
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(payload)
        logger.info("Wrote %d classified points to %s", len(classified), out)
    else:
        sys.stdout.write(payload + "\n")

    modes = Counter(c.mode for c in classified)
    logger.info("Modes: %s", ", ".join(f"{m}={n}" for m, n in modes.most_common()) or "none")


def reasons() -> None:
    """
    Print every reason code with its label.
    """
    width = max(len(code.value) for code in REASON_LABELS)
    for code, label in REASON_LABELS.items():
        sys.stdout.write(f"{code.value:<{width}}  {label}\n")


def serve(port: int) -> None:
    """
    Spin up FastAPI+Uvicorn to serve the detection API.

    Parameters
    ----------
    port
        Port on which to serve HTTP.
    """
    logger.info("Serve: port=%d", port)
    app = create_app()
    uvicorn.run(app, host="127.0.0.1", port=port)


def version() -> None:
    """
    Print the installed tmd package version.
    """
    try:
        ver = _get_version("tmd")
    except PackageNotFoundError:
        ver = "unknown"
    logger.info("tmd version %s", ver)


def parse_args(argv: list[str] | None = None) -> Namespace:
    """
    Parse command-line arguments and return the populated namespace.
    """
    parser = ArgumentParser(prog="tmd")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-point decisions.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # tmd classify
    p = subparsers.add_parser("classify", help="Classify a track file.")
    p.add_argument("file", type=str, help="Track file (.csv, .geojson, .json).")
    p.add_argument(
        "--format", dest="fmt", choices=track.FORMATS, help="Track format (default: from suffix)."
    )
    p.add_argument("--out", type=str, help="Output JSON file (default: stdout).")
    p.add_argument("--strict", action="store_true", help="Use the strict config preset.")
    p.add_argument("--config", dest="config_path", type=str, help="JSON config overrides.")

    # tmd reasons
    subparsers.add_parser("reasons", help="List reason codes and labels.")

    # tmd serve
    p = subparsers.add_parser("serve", help="Serve via FastAPI + Uvicorn.")
    p.add_argument(
        "--port", type=int, default=8000, help="Port number to serve on."
    )

    # tmd version
    subparsers.add_parser("version", help="Show tmd version and exit.")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """
    Entry point: dispatch to the selected subcommand.
    """
    args = parse_args(argv)
    if args.verbose:
        set_level("DEBUG")
    try:
        match args.command:
            case "classify":
                classify(args.file, args.fmt, args.out, args.strict, args.config_path)
            case "reasons":
                reasons()
            case "serve":
                serve(args.port)
            case "version":
                version()
            case _:
                sys.exit(1)
    except TmdError as exc:
        logger.error("%s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
