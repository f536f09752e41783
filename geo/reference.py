from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TypeVar

import yaml

from store.cache import CacheStore, CacheWriteError


logger = logging.getLogger(__name__)

UNCLASSIFIED_REGION = "other"

CACHE_KEY_VESSEL_TYPES = "reference-vessel-types"
CACHE_KEY_MARITIME_REGIONS = "reference-maritime-regions"
CACHE_KEY_INCIDENT_TYPES = "reference-incident-types"

_ROW_ERRORS = (AttributeError, KeyError, TypeError, ValueError)

T = TypeVar("T")


@dataclass(frozen=True)
class MaritimeRegion:
    code: str
    name: str
    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lng_min <= lng <= self.lng_max


@dataclass(frozen=True)
class VesselType:
    name: str
    category: str | None


@dataclass(frozen=True)
class ReferenceTables:
    maritime_regions: list[MaritimeRegion]
    vessel_types: list[VesselType]
    incident_types: list[str]


def _bounds(entry: dict, key: str, path: Path) -> tuple[float, float]:
    value = entry.get(key)
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError(f"invalid {key} bounds for region {entry.get('code')!r} in: {path}")
    low, high = float(value[0]), float(value[1])
    if low > high:
        raise ValueError(f"inverted {key} bounds for region {entry.get('code')!r} in: {path}")
    return low, high


def load_reference_tables(path: Path) -> ReferenceTables:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"invalid reference data: {path}")

    regions: list[MaritimeRegion] = []
    for entry in raw.get("maritime_regions") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid region entry in: {path}")
        lat_min, lat_max = _bounds(entry, "lat", path)
        lng_min, lng_max = _bounds(entry, "lng", path)
        regions.append(
            MaritimeRegion(
                code=str(entry["code"]).strip().casefold(),
                name=str(entry.get("name") or entry["code"]),
                lat_min=lat_min,
                lat_max=lat_max,
                lng_min=lng_min,
                lng_max=lng_max,
            )
        )

    vessel_types: list[VesselType] = []
    for entry in raw.get("vessel_types") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid vessel type entry in: {path}")
        category = entry.get("category")
        vessel_types.append(
            VesselType(
                name=str(entry["name"]).strip().casefold(),
                category=str(category) if category is not None else None,
            )
        )

    incident_types: list[str] = []
    for entry in raw.get("incident_types") or []:
        if isinstance(entry, dict):
            incident_types.append(str(entry["name"]).strip())
        else:
            incident_types.append(str(entry).strip())

    return ReferenceTables(
        maritime_regions=regions,
        vessel_types=vessel_types,
        incident_types=incident_types,
    )


def _region_row(entry: dict) -> MaritimeRegion:
    return MaritimeRegion(
        code=str(entry["code"]),
        name=str(entry["name"]),
        lat_min=float(entry["lat_min"]),
        lat_max=float(entry["lat_max"]),
        lng_min=float(entry["lng_min"]),
        lng_max=float(entry["lng_max"]),
    )


def _vessel_type_row(entry: dict) -> VesselType:
    category = entry.get("category")
    return VesselType(name=str(entry["name"]), category=str(category) if category is not None else None)


class ReferenceDataResolver:
    """Coarse lookups backed by the reference tables, cached for a day.

    Lookups never raise: a table that cannot be loaded degrades to the
    unclassified region or to no match. A cached table whose rows no longer
    fit is reloaded from the bundled YAML.
    """

    def __init__(self, store: CacheStore, path: Path) -> None:
        self._store = store
        self._path = path

    def _load_table(self, cache_key: str, *, use_cache: bool = True) -> tuple[list[dict], bool]:
        if use_cache:
            cached = self._store.get(cache_key)
            if isinstance(cached, dict) and isinstance(cached.get("data"), list):
                return cached["data"], True

        tables = load_reference_tables(self._path)
        fresh = {
            CACHE_KEY_MARITIME_REGIONS: [asdict(r) for r in tables.maritime_regions],
            CACHE_KEY_VESSEL_TYPES: [asdict(v) for v in tables.vessel_types],
            CACHE_KEY_INCIDENT_TYPES: [{"name": n} for n in tables.incident_types],
        }
        for key, data in fresh.items():
            try:
                self._store.store(key, {"data": data})
            except CacheWriteError:
                logger.warning("could not cache reference table %s", key, exc_info=True)
        return fresh[cache_key], False

    def _rows(self, cache_key: str, build: Callable[[dict], T]) -> list[T]:
        try:
            data, cached = self._load_table(cache_key)
            try:
                return [build(entry) for entry in data]
            except _ROW_ERRORS:
                if not cached:
                    raise
                logger.warning("cached reference table %s is stale, reloading", cache_key)
            data, _ = self._load_table(cache_key, use_cache=False)
            return [build(entry) for entry in data]
        except (OSError, yaml.YAMLError, *_ROW_ERRORS):
            logger.warning("reference table %s unavailable", cache_key, exc_info=True)
            return []

    def maritime_regions(self) -> list[MaritimeRegion]:
        return self._rows(CACHE_KEY_MARITIME_REGIONS, _region_row)

    def vessel_types(self) -> list[VesselType]:
        return self._rows(CACHE_KEY_VESSEL_TYPES, _vessel_type_row)

    def incident_types(self) -> list[str]:
        return self._rows(CACHE_KEY_INCIDENT_TYPES, lambda entry: str(entry["name"]))

    def find_region(self, lat: float | None, lng: float | None) -> str:
        if lat is None or lng is None:
            return UNCLASSIFIED_REGION
        try:
            lat, lng = float(lat), float(lng)
        except (TypeError, ValueError):
            return UNCLASSIFIED_REGION
        for region in self.maritime_regions():
            if region.contains(lat, lng):
                return region.code
        return UNCLASSIFIED_REGION

    def find_vessel_type(self, text: str | None) -> VesselType | None:
        if not text:
            return None
        haystack = text.casefold()
        matches = [v for v in self.vessel_types() if v.name and v.name in haystack]
        if not matches:
            return None
        return max(matches, key=lambda v: len(v.name))

    def normalize_vessel_type(
        self, text: str | None, *, default: str | None = None
    ) -> str | None:
        match = self.find_vessel_type(text)
        if match is None:
            return default
        return match.name.title()

    def find_incident_type(self, text: str | None) -> str | None:
        if not text:
            return None
        haystack = text.casefold()
        matches = [t for t in self.incident_types() if t and t.casefold() in haystack]
        if not matches:
            return None
        return max(matches, key=len)
