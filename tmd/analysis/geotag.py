# tmd/analysis/geotag.py

"""
Normalise reverse-geocode output into a `GeoTag`.

Accepts a Nominatim-style dict (`class`, `type`, `addresstype`, `name`,
`address`), the same wrapped as a GeoJSON Feature (`properties`), or
either one serialised as a JSON string. Anything unrecognisable yields
an empty tag, never an error.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from tmd.analysis.types import NO_GEOTAG, GeoTag

TRAIN_TYPES = {"railway_station", "station", "platform", "halt"}
AIRPORT_TYPES = {"aerodrome", "airport", "terminal"}
HIGHWAY_TYPES = {"motorway", "trunk", "motorway_link", "trunk_link"}


def _as_mapping(raw: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, Mapping):
        return None
    props = raw.get("properties")
    if raw.get("type") == "Feature" and isinstance(props, Mapping):
        # GeoJSON: geocode fields are either directly in properties or
        # nested once more under properties.geocode
        nested = props.get("geocode")
        return nested if isinstance(nested, Mapping) else props
    return raw


def _fields(geo: Mapping[str, Any]) -> tuple[str, str, str, Mapping[str, Any]]:
    address = geo.get("address")
    if not isinstance(address, Mapping):
        address = {}
    cls = str(geo.get("class") or address.get("class") or "").lower()
    typ = str(geo.get("type") or address.get("type") or "").lower()
    addresstype = str(geo.get("addresstype") or "").lower()
    return cls, typ, addresstype, address


def _display_name(geo: Mapping[str, Any], address: Mapping[str, Any]) -> Optional[str]:
    """"City - Name" when both are known, otherwise whichever is."""
    name = address.get("name") or geo.get("name") or ""
    city = address.get("city") or address.get("town") or address.get("village") or ""
    if city and name:
        return f"{city} - {name}"
    return name or city or None


def normalize_geocode(raw: Any) -> GeoTag:
    """
    Parameters
    ----------
    raw
        Reverse-geocode result (dict, GeoJSON Feature, JSON string) or None.

    Returns
    -------
    GeoTag
        Station/airport/highway predicates with display names.
    """
    geo = _as_mapping(raw)
    if not geo:
        return NO_GEOTAG
    cls, typ, addresstype, address = _fields(geo)

    at_station = cls == "railway" or typ in TRAIN_TYPES or addresstype == "railway"
    at_airport = cls == "aeroway" or typ in AIRPORT_TYPES or addresstype == "aeroway"
    # a plain road (class=highway, type=residential) is not a motorway
    road_type = str(address.get("road_type") or geo.get("highway") or "").lower()
    on_highway = typ in HIGHWAY_TYPES or (typ == "bridge" and road_type in HIGHWAY_TYPES)

    name = _display_name(geo, address)
    return GeoTag(
        at_train_station=bool(at_station),
        at_airport=bool(at_airport) and not at_station,
        on_highway=bool(on_highway) and not (at_station or at_airport),
        station_name=name if at_station else None,
        airport_name=name if at_airport and not at_station else None,
    )
