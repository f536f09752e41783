from __future__ import annotations

import re
from dataclasses import replace
from datetime import UTC, date, datetime, time
from typing import Any

from geo.reference import ReferenceDataResolver
from ingest.collectors.base import CollectorRequest, Extraction, SourceCollector
from ingest.fetch import FetchOptions
from ingest.parsers.json import records_at


FIELD_INCIDENT_NUMBER = 9
FIELD_SITREP = 66
FIELD_DATE = 75

_SITREP_TIME_RE = re.compile(r"(\d{2}\.\d{2}\.\d{4}):\s*(\d{4})\s*UTC")
_SITREP_PLACE_RE = re.compile(r"Posn:.*?,\s*([^.]+)")


def custom_field(marker: dict, field_id: int) -> Any:
    for entry in marker.get("custom_field_data") or []:
        if str(entry.get("id")) == str(field_id):
            return entry.get("value")
    return None


def sitrep_time(sitrep: str) -> time:
    match = _SITREP_TIME_RE.search(sitrep)
    if match is None:
        return time(0, 0)
    hhmm = match.group(2)
    return time(int(hhmm[:2]), int(hhmm[2:]))


def sitrep_place(sitrep: str) -> str | None:
    match = _SITREP_PLACE_RE.search(sitrep)
    return match.group(1).strip() if match else None


def classify_category(sitrep: str) -> str:
    text = sitrep.casefold()
    if any(word in text for word in ("armed", "weapon", "gun")):
        return "armed_attack"
    if "board" in text:
        return "boarding"
    if "attempt" in text:
        return "attempted_boarding"
    return "suspicious_approach"


def classify_severity(sitrep: str) -> str:
    text = sitrep.casefold()
    if any(word in text for word in ("gun", "weapon", "hostage")):
        return "high"
    if "knife" in text or "armed" in text:
        return "medium"
    return "low"


class IccCollector(SourceCollector):
    name = "icc"
    label = "ICC"

    def __init__(
        self, *, url: str, options: FetchOptions, resolver: ReferenceDataResolver
    ) -> None:
        super().__init__(url=url, options=options)
        self.resolver = resolver

    def build_request(self, now: datetime) -> CollectorRequest:
        return CollectorRequest(
            url=self.url,
            options=replace(
                self.options,
                method="GET",
                headers={**self.options.headers, "Accept": "application/json"},
            ),
        )

    def extract_records(self, payload: Any) -> Extraction:
        return self._extract_each(records_at(payload, "markers"), self._parse)

    def _parse(self, marker: dict) -> dict:
        number = custom_field(marker, FIELD_INCIDENT_NUMBER)
        if number in (None, ""):
            raise ValueError("missing incident number")
        date_text = custom_field(marker, FIELD_DATE)
        if not date_text:
            raise ValueError("missing incident date")
        sitrep = str(custom_field(marker, FIELD_SITREP) or "")

        occurred = datetime.combine(
            date.fromisoformat(str(date_text).strip()),
            sitrep_time(sitrep),
            tzinfo=UTC,
        )
        lat = float(marker["lat"])
        lon = float(marker["lng"])
        vessel_type = self.resolver.find_vessel_type(sitrep)

        return {
            "sourceId": str(number).strip(),
            "dateOccurred": occurred,
            "title": f"Maritime Incident {number}",
            "description": sitrep,
            "location": {
                "latitude": lat,
                "longitude": lon,
                "place": sitrep_place(sitrep),
                "region": self.resolver.find_region(lat, lon),
            },
            "vessel": {
                "name": None,
                "type": vessel_type.name if vessel_type else None,
                "flag": None,
                "imo": None,
                "status": None,
            },
            "category": classify_category(sitrep),
            "severity": classify_severity(sitrep),
            "raw": marker,
        }
