from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from normalize.validate import parse_incident_date
from store.cache import CacheStore, StaleWriteError


logger = logging.getLogger(__name__)

OrderingKey = Callable[[dict], int]

_YEAR_SEQUENCE_RE = re.compile(r"[A-Za-z]+-(\d{4})-(\d+)")


class ConcurrentUpdateError(Exception):
    pass


@dataclass(frozen=True)
class MergeResult:
    incidents: list[dict]
    new_ids: list[str]


@dataclass(frozen=True)
class ChangeOutcome:
    status: str
    total: int = 0
    new: int = 0
    new_ids: tuple[str, ...] = ()
    hash: str | None = None
    attempts: int = 0


def incidents_key(source: str) -> str:
    return f"{source}-incidents"


def hash_key(source: str) -> str:
    return f"{source}-hash"


def hashable_view(incident: dict) -> dict:
    location = incident.get("location")
    region = location.get("region") if isinstance(location, dict) else incident.get("region")
    return {
        "title": incident.get("title") or "",
        "description": incident.get("description") or "",
        "date": incident.get("dateOccurred") or incident.get("date") or "",
        "reference": incident.get("sourceId") or incident.get("reference") or "",
        "region": region or "",
        "category": incident.get("category") or "",
    }


def content_hash(incidents: Iterable[dict]) -> str:
    views = sorted(
        (hashable_view(i) for i in incidents),
        key=lambda v: (v["reference"], v["date"], v["title"]),
    )
    serialized = json.dumps(
        views, ensure_ascii=False, sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def year_sequence_key(native_id: str) -> int:
    match = _YEAR_SEQUENCE_RE.search(native_id or "")
    if match is None:
        return 0
    return int(match.group(1)) * 1000 + int(match.group(2))


def date_ordering_key(incident: dict) -> int:
    occurred = parse_incident_date(str(incident.get("dateOccurred") or ""))
    if occurred is None:
        return 0
    return int(occurred.timestamp())


def merge_incidents(
    candidates: list[dict],
    existing: list[dict],
    *,
    ordering_key: OrderingKey,
) -> MergeResult:
    existing_ids = {str(i.get("sourceId")) for i in existing}
    fresh: list[dict] = []
    new_ids: list[str] = []
    for incident in candidates:
        source_id = str(incident.get("sourceId"))
        if source_id in existing_ids or source_id in new_ids:
            continue
        fresh.append(incident)
        new_ids.append(source_id)

    seen: set[str] = set()
    merged: list[dict] = []
    for incident in fresh + existing:
        source_id = str(incident.get("sourceId"))
        if source_id in seen:
            continue
        seen.add(source_id)
        merged.append(incident)

    merged.sort(key=ordering_key, reverse=True)
    return MergeResult(incidents=merged, new_ids=new_ids)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def persist_changes(
    store: CacheStore,
    *,
    source: str,
    candidates: list[dict],
    new_hash: str,
    ordering_key: OrderingKey,
    skipped_count: int = 0,
    attempts: int = 3,
    extra_metadata: dict | None = None,
) -> ChangeOutcome:
    if not candidates:
        return ChangeOutcome(status="no-data")

    cached_hash = store.get(hash_key(source))
    if cached_hash == new_hash:
        return ChangeOutcome(status="no-change", hash=new_hash)

    for attempt in range(1, attempts + 1):
        envelope, revision = store.get_with_revision(incidents_key(source))
        existing: list[dict] = []
        if isinstance(envelope, dict) and isinstance(envelope.get("incidents"), list):
            existing = envelope["incidents"]

        result = merge_incidents(candidates, existing, ordering_key=ordering_key)
        metadata = {
            "totalCount": len(result.incidents),
            "newCount": len(result.new_ids),
            "skippedCount": skipped_count,
            **(extra_metadata or {}),
        }
        try:
            store.compare_and_store(
                incidents_key(source),
                {
                    "incidents": result.incidents,
                    "hash": new_hash,
                    "timestamp": _utc_now_iso(),
                    "metadata": metadata,
                },
                expected_revision=revision,
            )
        except StaleWriteError as e:
            logger.warning(
                "%s incident set changed during merge (attempt %d/%d): %s",
                source,
                attempt,
                attempts,
                e,
            )
            continue

        store.store(hash_key(source), new_hash)
        return ChangeOutcome(
            status="success",
            total=len(result.incidents),
            new=len(result.new_ids),
            new_ids=tuple(result.new_ids),
            hash=new_hash,
            attempts=attempt,
        )

    raise ConcurrentUpdateError(
        f"{source} incident set kept changing; gave up after {attempts} attempts"
    )
