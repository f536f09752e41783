from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from diff.engine import year_sequence_key
from geo.coords import degmin_to_decimal, format_degmin
from geo.reference import ReferenceDataResolver
from ingest.collectors.base import (
    CollectorRequest,
    Extraction,
    SourceCollector,
    require_field,
)
from ingest.fetch import FetchOptions
from ingest.parsers.json import records_at


_DEGMIN_FIELDS = (
    "latDegree",
    "latMinute",
    "latOption",
    "longDegree",
    "longMinute",
    "longOption",
)


def _occurred(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (
            datetime.fromtimestamp(value / 1000.0, tz=UTC)
            .isoformat()
            .replace("+00:00", "Z")
        )
    return value


def _has_degmin(raw: dict) -> bool:
    return all(raw.get(f) not in (None, "") for f in _DEGMIN_FIELDS)


def position(raw: dict) -> tuple[float | None, float | None]:
    lat = raw.get("positionLatitude")
    lon = raw.get("positionLongitude")
    if lat not in (None, "") and lon not in (None, ""):
        return float(lat), float(lon)
    if _has_degmin(raw):
        return (
            degmin_to_decimal(raw["latDegree"], raw["latMinute"], raw["latOption"]),
            degmin_to_decimal(raw["longDegree"], raw["longMinute"], raw["longOption"]),
        )
    return None, None


class RecaapCollector(SourceCollector):
    name = "recaap"
    label = "RECAAP"

    def __init__(
        self, *, url: str, options: FetchOptions, resolver: ReferenceDataResolver
    ) -> None:
        super().__init__(url=url, options=options)
        self.resolver = resolver

    def build_request(self, now: datetime) -> CollectorRequest:
        body = {
            "incidentDateFrom": "",
            "incidentDateTo": "",
            "shipName": "",
            "shipImoNumber": "",
            "shipFlag": "",
            "shipType": "",
            "areaLocation": [],
            "incidentType": "",
            "reportType": "Case",
            "incidentNo": "",
        }
        headers = {
            **self.options.headers,
            "Accept": "*/*",
            "Content-Type": "application/json",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": "https://portal.recaap.org/OpenMap",
        }
        return CollectorRequest(
            url=self.url,
            options=replace(self.options, method="POST", headers=headers, json_body=body),
        )

    def extract_records(self, payload: Any) -> Extraction:
        return self._extract_each(records_at(payload), self._parse)

    def _parse(self, raw: dict) -> dict:
        incident_no = require_field(raw, "incidentNo")
        lat, lon = position(raw)
        ship_name = str(raw.get("shipName") or "").strip()
        ship_type = str(raw.get("shipType") or "").strip()

        place = ""
        if _has_degmin(raw):
            place = format_degmin(*(raw[f] for f in _DEGMIN_FIELDS))

        return {
            "sourceId": incident_no,
            "dateOccurred": _occurred(raw.get("fullTimestampOfIncident")),
            "title": f"{raw.get('incidentType') or 'Incident'} - {ship_name} ({ship_type})",
            "description": raw.get("attackMethodDesc"),
            "location": {
                "latitude": lat,
                "longitude": lon,
                "place": place or raw.get("areaDescription"),
                "region": self.resolver.find_region(lat, lon),
            },
            "vessel": {
                "name": ship_name,
                "type": self.resolver.normalize_vessel_type(ship_type, default=ship_type),
                "flag": raw.get("shipFlag"),
                "imo": raw.get("shipImoNumber"),
                "status": None,
            },
            "category": raw.get("classification"),
            "raw": raw,
        }

    def ordering_key(self, incident: dict) -> int:
        return year_sequence_key(str(incident.get("sourceId") or ""))
