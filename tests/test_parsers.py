import json

import pytest

from tmd.analysis.errors import TrackParseError
from tmd.parsers import track


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_parse_csv(tmp_path):
    geocode = json.dumps({"class": "railway", "type": "station", "name": "A"}).replace('"', '""')
    path = _write(tmp_path / "t.csv", (
        "lat,lng,timestamp_ms,speed_kmh,geocode\n"
        "52.0,13.0,1700000000000,5.5,\n"
        f'52.001,13.0,1700000030000,,"{geocode}"\n'
    ))
    points = list(track.parse_track(path))
    assert len(points) == 2
    assert points[0].speed_kmh == 5.5
    assert points[1].speed_kmh is None
    assert points[1].to_point().geotag.at_train_station


def test_parse_csv_minimal_columns_and_iso_time(tmp_path):
    path = _write(tmp_path / "t.csv", "lat,lng,timestamp_ms\n52.0,13.0,2024-05-01T12:00:00Z\n")
    [point] = list(track.parse_csv(path))
    assert point.timestamp_ms == 1714564800000


def test_parse_csv_errors(tmp_path):
    missing = _write(tmp_path / "missing.csv", "lat,lng\n1,2\n")
    with pytest.raises(TrackParseError, match="timestamp_ms"):
        list(track.parse_track(missing))

    bad_lat = _write(tmp_path / "bad.csv", "lat,lng,timestamp_ms\n95.0,13.0,1700000000000\n")
    with pytest.raises(TrackParseError, match="bad.csv:2"):
        list(track.parse_track(bad_lat))

    garbage = _write(tmp_path / "garbage.csv", "lat,lng,timestamp_ms\nabc,13.0,1\n")
    with pytest.raises(TrackParseError):
        list(track.parse_track(garbage))


def test_parse_geojson(tmp_path):
    doc = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [13.0, 52.0]},
                "properties": {"timestamp": "2024-05-01T12:00:00+00:00", "speed_kmh": 30},
            },
            {
                "type": "Feature",
                "geometry": {"type": "LineString", "coordinates": [[13.0, 52.0], [13.1, 52.1]]},
                "properties": {},
            },
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [13.001, 52.001]},
                "properties": {
                    "timestamp": 1714564830000,
                    "geocode": {"class": "highway", "type": "motorway"},
                },
            },
        ],
    }
    path = _write(tmp_path / "t.geojson", json.dumps(doc))
    points = list(track.parse_track(path))
    assert [p.timestamp_ms for p in points] == [1714564800000, 1714564830000]
    assert points[0].lat == 52.0 and points[0].lng == 13.0
    assert points[1].to_point().geotag.on_highway


def test_parse_geojson_errors(tmp_path):
    not_fc = _write(tmp_path / "a.geojson", json.dumps({"type": "Feature"}))
    with pytest.raises(TrackParseError, match="FeatureCollection"):
        list(track.parse_track(not_fc))

    no_time = _write(tmp_path / "b.geojson", json.dumps({
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "geometry": {"type": "Point", "coordinates": [13, 52]}, "properties": {}}],
    }))
    with pytest.raises(TrackParseError, match="timestamp"):
        list(track.parse_track(no_time))


def test_parse_json_array_and_wrapped(tmp_path):
    rows = [
        {"lat": 52.0, "lng": 13.0, "timestamp_ms": 1700000000000, "speed_kmh": 40},
        {"lat": 52.001, "lng": 13.0, "timestamp": "2024-05-01T12:00:00Z"},
    ]
    plain = _write(tmp_path / "a.json", json.dumps(rows))
    wrapped = _write(tmp_path / "b.json", json.dumps({"points": rows}))
    for path in (plain, wrapped):
        points = list(track.parse_track(path))
        assert points[0].speed_kmh == 40
        assert points[1].timestamp_ms == 1714564800000


def test_parse_json_errors(tmp_path):
    with pytest.raises(TrackParseError, match="invalid JSON"):
        list(track.parse_track(_write(tmp_path / "a.json", "[{")))
    with pytest.raises(TrackParseError, match="array"):
        list(track.parse_track(_write(tmp_path / "b.json", '{"foo": 1}')))
    with pytest.raises(TrackParseError, match="object"):
        list(track.parse_track(_write(tmp_path / "c.json", "[1]")))


def test_format_detection(tmp_path):
    assert track.detect_format("x.GeoJSON") == "geojson"
    with pytest.raises(TrackParseError):
        track.detect_format("x.gpx")
    with pytest.raises(TrackParseError, match="No such"):
        track.parse_track(str(tmp_path / "nope.csv"))

    # explicit format overrides the suffix
    path = _write(tmp_path / "t.txt", "lat,lng,timestamp_ms\n52.0,13.0,1\n")
    assert len(list(track.parse_track(path, "csv"))) == 1
