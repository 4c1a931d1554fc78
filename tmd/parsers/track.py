"""
Track parsers: read GPS tracks from CSV, GeoJSON or JSON files and yield
validated `PointIn` records.
"""

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from tmd.analysis.errors import TrackParseError
from tmd.utils.validate import PointIn

FORMATS = ("csv", "geojson", "json")


def detect_format(file_path: str) -> str:
    """
    Guess the track format from the file suffix.

    Raises
    ------
    TrackParseError
        If the suffix is not one of .csv, .geojson, .json.
    """
    suffix = Path(file_path).suffix.lower().lstrip(".")
    if suffix in FORMATS:
        return suffix
    raise TrackParseError(f"Cannot infer track format from {file_path!r}; pass --format")


def parse_timestamp(value: Any) -> int:
    """
    Milliseconds since epoch from an int/float (ms) or an ISO-8601 string.
    Naive ISO strings are taken as UTC.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _validate(record: dict, where: str) -> PointIn:
    try:
        return PointIn(**record)
    except ValidationError as exc:
        raise TrackParseError(f"{where}: {exc.errors()[0]['msg']} ({exc.errors()[0]['loc']})") from exc


def parse_csv(file_path: str) -> Iterator[PointIn]:
    """
    CSV with a header row: lat,lng,timestamp_ms[,speed_kmh][,geocode].

    `timestamp_ms` may also be an ISO string; `geocode` is a JSON object.
    """
    with open(file_path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = {"lat", "lng", "timestamp_ms"} - set(reader.fieldnames or ())
        if missing:
            raise TrackParseError(f"{file_path}: missing columns {', '.join(sorted(missing))}")
        for lineno, row in enumerate(reader, start=2):
            where = f"{file_path}:{lineno}"
            try:
                record: dict[str, Any] = {
                    "lat": float(row["lat"]),
                    "lng": float(row["lng"]),
                    "timestamp_ms": parse_timestamp(row["timestamp_ms"]),
                }
                speed = (row.get("speed_kmh") or "").strip()
                if speed:
                    record["speed_kmh"] = float(speed)
                geocode = (row.get("geocode") or "").strip()
                if geocode:
                    record["geocode"] = json.loads(geocode)
            except (TypeError, ValueError) as exc:
                raise TrackParseError(f"{where}: {exc}") from exc
            yield _validate(record, where)


def _load_json(file_path: str) -> Any:
    try:
        with open(file_path, encoding="utf-8") as f:
            return json.load(f)
    except ValueError as exc:
        raise TrackParseError(f"{file_path}: invalid JSON ({exc})") from exc


def parse_geojson(file_path: str) -> Iterator[PointIn]:
    """
    FeatureCollection of Point features. Timestamps come from
    `properties.timestamp` (ms or ISO string) or `properties.timestamp_ms`;
    speed from `properties.speed_kmh`; geocode from `properties.geocode`.
    Non-Point features are skipped.
    """
    data = _load_json(file_path)
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise TrackParseError(f"{file_path}: expected a GeoJSON FeatureCollection")

    for idx, feature in enumerate(data.get("features") or []):
        where = f"{file_path}:features[{idx}]"
        geometry = (feature or {}).get("geometry") or {}
        if geometry.get("type") != "Point":
            continue
        props = feature.get("properties") or {}
        try:
            lng, lat = geometry["coordinates"][:2]
            ts = props.get("timestamp", props.get("timestamp_ms"))
            if ts is None:
                raise ValueError("missing timestamp")
            record: dict[str, Any] = {
                "lat": lat,
                "lng": lng,
                "timestamp_ms": parse_timestamp(ts),
                "speed_kmh": props.get("speed_kmh"),
                "geocode": props.get("geocode"),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise TrackParseError(f"{where}: {exc}") from exc
        yield _validate(record, where)


def parse_json(file_path: str) -> Iterator[PointIn]:
    """
    JSON array of point objects, or an object with a `points` array.
    """
    data = _load_json(file_path)
    if isinstance(data, dict):
        data = data.get("points")
    if not isinstance(data, list):
        raise TrackParseError(f"{file_path}: expected a JSON array of points")
    for idx, item in enumerate(data):
        where = f"{file_path}:[{idx}]"
        if not isinstance(item, dict):
            raise TrackParseError(f"{where}: expected an object")
        record = dict(item)
        if "timestamp_ms" not in record and "timestamp" in record:
            try:
                record["timestamp_ms"] = parse_timestamp(record.pop("timestamp"))
            except ValueError as exc:
                raise TrackParseError(f"{where}: {exc}") from exc
        yield _validate(record, where)


def parse_track(file_path: str, fmt: Optional[str] = None) -> Iterator[PointIn]:
    """
    Dispatch to the parser for `fmt` (inferred from the suffix when None).
    """
    if not Path(file_path).is_file():
        raise TrackParseError(f"No such track file: {file_path}")
    fmt = fmt or detect_format(file_path)
    match fmt:
        case "csv":
            return parse_csv(file_path)
        case "geojson":
            return parse_geojson(file_path)
        case "json":
            return parse_json(file_path)
        case _:
            raise TrackParseError(f"Unsupported track format {fmt!r}")
