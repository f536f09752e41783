from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from geo.coords import dms_to_decimal
from ingest.collectors.base import (
    CollectorRequest,
    CountExpectation,
    Extraction,
    SourceCollector,
    require_field,
)
from ingest.parsers.json import records_at


_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Referer": "https://www.ukmto.org/",
    "Origin": "https://www.ukmto.org",
}


def _coordinate(raw: dict, decimal_key: str, dms_key: str) -> float | None:
    value = raw.get(decimal_key)
    if value not in (None, ""):
        return float(value)
    dms = raw.get(dms_key)
    if dms:
        return dms_to_decimal(str(dms))
    return None


class UkmtoCollector(SourceCollector):
    name = "ukmto"
    label = "UKMTO"
    count_expectation = CountExpectation(min_count=4, max_count=10, max_delta=3)

    def build_request(self, now: datetime) -> CollectorRequest:
        return CollectorRequest(
            url=self.url,
            options=replace(
                self.options,
                method="GET",
                headers={**self.options.headers, **_BROWSER_HEADERS},
            ),
        )

    def extract_records(self, payload: Any) -> Extraction:
        return self._extract_each(records_at(payload), self._parse)

    def _parse(self, raw: dict) -> dict:
        number = require_field(raw, "incidentNumber")
        lat = _coordinate(raw, "locationLatitude", "locationLatitudeDDDMMSS")
        lon = _coordinate(raw, "locationLongitude", "locationLongitudeDDDMMSS")
        pirate_control = bool(raw.get("vesselUnderPirateControl"))

        return {
            "sourceId": number,
            "dateOccurred": raw.get("utcDateOfIncident"),
            "title": raw.get("incidentTypeName"),
            "description": raw.get("otherDetails"),
            "location": {
                "latitude": lat,
                "longitude": lon,
                "place": raw.get("place"),
                "region": "indian_ocean",
            },
            "vessel": {
                "name": raw.get("vesselName"),
                "type": raw.get("vesselType"),
                "flag": raw.get("vesselFlag"),
                "imo": raw.get("vesselImo"),
                "status": "under_pirate_control" if pirate_control else "normal",
            },
            "category": raw.get("incidentTypeName"),
            "severity": raw.get("incidentTypeLevel"),
            "status": "active_piracy" if pirate_control else "active",
            "raw": raw,
        }
