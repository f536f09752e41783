from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta


logger = logging.getLogger(__name__)

HIGH_LEVEL_REGIONS = (
    "west_africa",
    "indian_ocean",
    "southeast_asia",
    "americas",
    "europe",
    "other",
)

REQUIRED_TEXT_FIELDS = ("sourceId", "title", "description")
MAX_FUTURE_SKEW = timedelta(days=1)


@dataclass(frozen=True)
class Validated:
    value: dict
    warnings: tuple[str, ...]
    strict: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.warnings

    @property
    def accepted(self) -> bool:
        return self.is_valid or not self.strict


def parse_incident_date(value: str) -> datetime | None:
    text = (value or "").strip()
    if not text:
        return None
    try:
        if len(text) == len("2024-01-31"):
            d = date.fromisoformat(text)
            return datetime(d.year, d.month, d.day, tzinfo=UTC)
        if text.endswith("Z"):
            text = text.removesuffix("Z") + "+00:00"
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz=UTC)


def normalize_region(region: str) -> str:
    normalized = "_".join(region.strip().casefold().split())
    if normalized in HIGH_LEVEL_REGIONS:
        return normalized
    return "other"


def _coerce_coordinate(
    value: object, name: str, low: float, high: float, warnings: list[str]
) -> float | None:
    if value is None:
        warnings.append(f"Missing required field: location.{name}")
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.append(f"Invalid type for location.{name}: expected number")
        return None
    if not low <= number <= high:
        warnings.append(f"Invalid {name}: {number} outside [{low:g}, {high:g}]")
    return number


def validate_incident(
    incident: dict,
    *,
    source: str,
    strict: bool = False,
    now: datetime | None = None,
) -> Validated:
    warnings: list[str] = []
    normalized = copy.deepcopy(incident)

    for field in REQUIRED_TEXT_FIELDS:
        value = incident.get(field)
        if value is None or value == "":
            warnings.append(f"Missing required field: {field}")
        elif not isinstance(value, str):
            warnings.append(
                f"Invalid type for {field}: expected string, got {type(value).__name__}"
            )

    date_value = incident.get("dateOccurred") or ""
    occurred = parse_incident_date(str(date_value))
    if not date_value:
        warnings.append("Missing required field: dateOccurred")
    elif occurred is None:
        warnings.append(f"Invalid date format: {date_value}")
    elif occurred > (now or datetime.now(tz=UTC)) + MAX_FUTURE_SKEW:
        warnings.append(f"Date is in the future: {date_value}")

    location = normalized.get("location")
    if isinstance(location, dict):
        lat = _coerce_coordinate(location.get("latitude"), "latitude", -90.0, 90.0, warnings)
        lon = _coerce_coordinate(
            location.get("longitude"), "longitude", -180.0, 180.0, warnings
        )
        location["latitude"] = lat
        location["longitude"] = lon
        location["coordinates"] = {"latitude": lat, "longitude": lon}

        region = str(location.get("region") or "")
        if region:
            location["region"] = normalize_region(region)
            if location["region"] != "_".join(region.strip().casefold().split()):
                logger.debug(
                    "non-standard region %r for %s, using 'other'",
                    region,
                    incident.get("sourceId"),
                )
    else:
        warnings.append("Missing required field: location")

    metadata = dict(normalized.get("_metadata") or {})
    metadata["validatedAt"] = (now or datetime.now(tz=UTC)).isoformat().replace("+00:00", "Z")
    metadata["validationSource"] = source
    metadata["validationStatus"] = "valid" if not warnings else "invalid"
    metadata["validationErrors"] = list(warnings)
    normalized["_metadata"] = metadata

    return Validated(value=normalized, warnings=tuple(warnings), strict=strict)
