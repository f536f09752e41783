from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any


_VESSEL_FIELDS = ("name", "type", "flag", "imo", "status")
_DATE_ONLY_LEN = len("2024-01-31")


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def _midnight_utc(d: date) -> str:
    return datetime(d.year, d.month, d.day, tzinfo=UTC).isoformat().replace("+00:00", "Z")


def normalize_date(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return dt.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return _midnight_utc(value)

    text = str(value).strip()
    if not text:
        return ""
    if len(text) == _DATE_ONLY_LEN:
        try:
            return _midnight_utc(date.fromisoformat(text))
        except ValueError:
            return text
    try:
        dt = datetime.fromisoformat(text.removesuffix("Z") + ("+00:00" if text.endswith("Z") else ""))
    except ValueError:
        return text
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _coordinate(value: Any) -> float | str | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return str(value).strip() or None


def _source_id(record: dict, source: str) -> str:
    prefix = f"{source}-"
    candidate = record.get("sourceId")
    if candidate is None or candidate == "":
        candidate = record.get("reference")
    native = _text(candidate)
    if not native:
        return ""
    if native.startswith(prefix):
        return native
    return f"{prefix}{native}"


def _location(record: dict) -> dict:
    location = record.get("location")
    if not isinstance(location, dict):
        location = {"place": location} if isinstance(location, str) else {}

    latitude = location.get("latitude", record.get("latitude"))
    longitude = location.get("longitude", record.get("longitude"))
    place = location.get("place", record.get("place"))
    region = location.get("region", record.get("region"))

    lat = _coordinate(latitude)
    lon = _coordinate(longitude)
    return {
        "latitude": lat,
        "longitude": lon,
        "place": _text(place),
        "region": _text(region),
        "coordinates": {"latitude": lat, "longitude": lon},
    }


def _vessel(record: dict) -> dict | None:
    vessel = record.get("vessel")
    if not isinstance(vessel, dict):
        vessel = {
            "name": record.get("vesselName"),
            "type": record.get("vesselType"),
        }
    normalized = {key: _optional_text(vessel.get(key)) for key in _VESSEL_FIELDS}
    if all(value is None for value in normalized.values()):
        return None
    return normalized


def _updates(record: dict) -> list[dict]:
    updates = record.get("updates")
    if isinstance(updates, list):
        out: list[dict] = []
        for update in updates:
            if isinstance(update, dict):
                entry = {"text": _text(update.get("text"))}
                if update.get("timestamp"):
                    entry["timestamp"] = normalize_date(update["timestamp"])
                out.append(entry)
            elif update:
                out.append({"text": _text(update)})
        return out
    if record.get("update"):
        return [{"text": _text(record["update"])}]
    return []


def standardize_incident(
    record: dict,
    *,
    source_name: str,
    source_url: str,
    now: str | None = None,
) -> dict:
    source = source_name.upper()
    previous_metadata = record.get("_metadata")
    if not isinstance(previous_metadata, dict):
        previous_metadata = {}

    if "raw" in record:
        raw = record["raw"]
    else:
        raw = {k: v for k, v in record.items() if k != "_metadata"}

    return {
        "sourceId": _source_id(record, source),
        "source": source,
        "sourceUrl": _text(record.get("sourceUrl")) or source_url,
        "dateOccurred": normalize_date(
            record.get("dateOccurred", record.get("date"))
        ),
        "title": _text(record.get("title")),
        "description": _text(record.get("description")),
        "location": _location(record),
        "vessel": _vessel(record),
        "category": _text(record.get("category", record.get("type"))),
        "severity": _text(record.get("severity")),
        "status": _text(record.get("status")) or "active",
        "updates": _updates(record),
        "raw": raw,
        "_metadata": {
            "standardizedAt": now or _utc_now_iso(),
            "sourceName": source,
            "sourceUrl": source_url,
            "validationStatus": previous_metadata.get("validationStatus", "pending"),
            "validationErrors": list(previous_metadata.get("validationErrors") or []),
        },
    }
