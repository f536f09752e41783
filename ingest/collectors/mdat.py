from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ingest.collectors.base import (
    CollectionWindow,
    CollectorRequest,
    Extraction,
    SourceCollector,
    require_field,
)
from ingest.parsers.geojson import parse_feature_collection, point_lat_lon


class MdatCollector(SourceCollector):
    name = "mdat"
    label = "MDAT"
    window = CollectionWindow(days=30, overlap_days=2)

    def build_request(self, now: datetime) -> CollectorRequest:
        start = (
            self.window.start(now)
            .astimezone(tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        return CollectorRequest(
            url=f"{self.url.rstrip('/')}/{start}",
            options=replace(
                self.options,
                method="GET",
                headers={
                    **self.options.headers,
                    "Accept": "application/json",
                    "Origin": "https://gog-mdat.org",
                },
            ),
        )

    def extract_records(self, payload: Any) -> Extraction:
        return self._extract_each(parse_feature_collection(payload), self._parse)

    def _parse(self, feature: dict) -> dict:
        props = feature["properties"]
        serial = require_field(props, "serial")
        lat, lon = point_lat_lon(feature)
        title = str(props.get("title") or "")
        vessel = props.get("vessel") or {}
        occurrence_type = props.get("occurrenceType") or {}

        updates = []
        if "UPDATE" in title.upper():
            updates.append(
                {"text": props.get("description") or "", "timestamp": props.get("gdh")}
            )

        return {
            "sourceId": serial,
            "dateOccurred": props.get("gdh"),
            "title": title,
            "description": props.get("description"),
            "location": {
                "latitude": lat,
                "longitude": lon,
                "place": props.get("location") or "Gulf of Guinea",
                "region": "west_africa",
            },
            "vessel": {
                "name": vessel.get("name"),
                "type": vessel.get("type"),
                "flag": vessel.get("flag"),
                "imo": vessel.get("imo"),
                "status": None,
            },
            "category": occurrence_type.get("label"),
            "severity": props.get("severity"),
            "updates": updates,
            "raw": feature,
        }
