from __future__ import annotations

import logging
from collections.abc import Iterable

from diff.engine import hash_key, incidents_key
from store.cache import CacheStore


logger = logging.getLogger(__name__)


def clear_sources(store: CacheStore, sources: Iterable[str]) -> list[str]:
    """Drop the incident set and hash of each source; returns the keys removed."""
    removed: list[str] = []
    for source in sources:
        for key in (incidents_key(source), hash_key(source)):
            if store.delete(key):
                removed.append(key)
        logger.info("cleared cache for %s", source)
    return removed


def rollback_recent(store: CacheStore, source: str, count: int) -> dict | None:
    """Remove the ``count`` newest incidents so the next run merges them again.

    The hash is dropped as well, otherwise an unchanged upstream would be
    reported as ``no-change`` and the removed incidents would never return.
    """
    envelope, revision = store.get_with_revision(incidents_key(source))
    if not isinstance(envelope, dict) or not isinstance(envelope.get("incidents"), list):
        return None

    incidents = envelope["incidents"]
    removed = incidents[: max(count, 0)]
    remaining = incidents[max(count, 0) :]
    metadata = dict(envelope.get("metadata") or {})
    metadata["totalCount"] = len(remaining)
    store.compare_and_store(
        incidents_key(source),
        {**envelope, "incidents": remaining, "metadata": metadata},
        expected_revision=revision,
    )
    store.delete(hash_key(source))
    logger.info("rolled back %d %s incidents", len(removed), source)
    return {
        "removed": [i.get("sourceId") for i in removed],
        "remainingCount": len(remaining),
    }
