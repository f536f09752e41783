from __future__ import annotations

from typing import Any

from ingest.parsers.json import MalformedResponseError, records_at


def parse_feature_collection(doc: Any) -> list[dict]:
    if isinstance(doc, dict) and doc.get("type") not in (None, "FeatureCollection"):
        raise MalformedResponseError(f"unexpected GeoJSON type: {doc.get('type')}")
    return list(records_at(doc, "features"))


def point_lat_lon(feature: dict) -> tuple[float, float]:
    coords = feature["geometry"]["coordinates"]
    lon, lat = coords[0], coords[1]
    return float(lat), float(lon)
