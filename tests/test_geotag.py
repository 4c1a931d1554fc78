import json

from tmd.analysis.geotag import normalize_geocode
from tmd.analysis.types import NO_GEOTAG


def test_railway_station_with_city():
    tag = normalize_geocode({
        "class": "railway",
        "type": "station",
        "name": "Hauptbahnhof",
        "address": {"city": "Berlin"},
    })
    assert tag.at_train_station
    assert not tag.at_airport and not tag.on_highway
    assert tag.station_name == "Berlin - Hauptbahnhof"


def test_address_name_wins_over_top_level_name():
    tag = normalize_geocode({
        "type": "halt",
        "name": "ignored",
        "address": {"name": "Ostkreuz"},
    })
    assert tag.station_name == "Ostkreuz"


def test_airport():
    tag = normalize_geocode({"class": "aeroway", "type": "aerodrome", "name": "BER"})
    assert tag.at_airport
    assert tag.airport_name == "BER"
    assert tag.station_name is None


def test_motorway_and_plain_road():
    assert normalize_geocode({"class": "highway", "type": "motorway"}).on_highway
    assert normalize_geocode({"class": "highway", "type": "trunk_link"}).on_highway
    assert normalize_geocode({"type": "bridge", "address": {"road_type": "motorway"}}).on_highway
    assert normalize_geocode({"class": "highway", "type": "residential"}).is_empty


def test_geojson_feature_nested_and_flat():
    nested = {"type": "Feature", "properties": {"geocode": {"class": "railway", "name": "X"}}}
    flat = {"type": "Feature", "properties": {"class": "aeroway", "name": "Y"}}
    assert normalize_geocode(nested).station_name == "X"
    assert normalize_geocode(flat).airport_name == "Y"


def test_json_string_input():
    raw = json.dumps({"class": "railway", "type": "platform", "name": "Gleis 3"})
    assert normalize_geocode(raw).at_train_station


def test_station_takes_precedence():
    tag = normalize_geocode({"class": "railway", "type": "terminal", "name": "Airport Rail"})
    assert tag.at_train_station
    assert not tag.at_airport


def test_unrecognisable_input_is_empty():
    assert normalize_geocode(None) == NO_GEOTAG
    assert normalize_geocode("not json") == NO_GEOTAG
    assert normalize_geocode([1, 2, 3]) == NO_GEOTAG
    assert normalize_geocode({"class": "amenity", "type": "cafe"}).is_empty
