from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from geo.coords import extract_first_coords
from geo.reference import ReferenceDataResolver
from ingest.collectors.base import CollectorRequest, Extraction, SourceCollector
from ingest.fetch import FetchOptions
from ingest.parsers.cwd_html import parse_cwd_sections
from ingest.parsers.json import MalformedResponseError


class CwdCollector(SourceCollector):
    """Clearwater Dynamics incident page, scraped from HTML."""

    name = "cwd"
    label = "CWD"

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
                headers={**self.options.headers, "Accept": "text/html"},
                response_type="text",
            ),
        )

    def extract_records(self, payload: Any) -> Extraction:
        if not isinstance(payload, str):
            raise MalformedResponseError(
                f"expected HTML text, got {type(payload).__name__}"
            )
        return self._extract_each(parse_cwd_sections(payload), self._parse)

    def _parse(self, section: dict) -> dict:
        for key in ("title", "description", "reference"):
            if not section.get(key):
                raise ValueError(f"missing {key}")

        coords = extract_first_coords(section["description"])
        lat, lon = coords if coords is not None else (None, None)
        if coords is not None:
            region = self.resolver.find_region(lat, lon)
        else:
            region = section.get("region") or ""

        category = section.get("category") or self.resolver.find_incident_type(
            f"{section['title']} {section['description']}"
        )

        return {
            "sourceId": section["reference"],
            "dateOccurred": section.get("date"),
            "title": section["title"],
            "description": section["description"],
            "location": {
                "latitude": lat,
                "longitude": lon,
                "place": section.get("region") or "",
                "region": region,
            },
            "category": category,
            "updates": section.get("updates") or [],
            "raw": section,
        }
