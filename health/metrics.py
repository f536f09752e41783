from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ingest.collectors.base import CountExpectation
from store.cache import CacheStore, CacheWriteError


logger = logging.getLogger(__name__)

HISTORY_SIZE = 10


@dataclass(frozen=True)
class CountCheck:
    is_valid: bool
    count: int
    delta: int = 0
    within_range: bool = True
    history: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "count": self.count,
            "delta": self.delta,
            "withinRange": self.within_range,
            "history": self.history,
        }


def metrics_key(source: str) -> str:
    return f"{source}-metrics"


def record_count_sample(
    store: CacheStore,
    source: str,
    count: int,
    expectation: CountExpectation,
    *,
    now: datetime | None = None,
) -> CountCheck:
    """Record how many raw records a run saw and flag counts out of the usual band.

    Anomalies are reported, never enforced. Any failure reading or writing the
    sample window yields a passing check.
    """
    try:
        metrics = store.get(metrics_key(source))
        if not isinstance(metrics, dict):
            metrics = {"updates": [], "lastCount": count}
        last_count = int(metrics.get("lastCount", count))

        within_range = expectation.min_count <= count <= expectation.max_count
        delta = abs(count - last_count)
        is_valid = within_range and count > 0 and delta <= expectation.max_delta

        updates = list(metrics.get("updates") or [])
        updates.append(
            {
                "timestamp": (now or datetime.now(tz=UTC)).isoformat().replace("+00:00", "Z"),
                "count": count,
                "isWithinRange": within_range,
                "delta": delta,
            }
        )
        updates = updates[-HISTORY_SIZE:]
        store.store(metrics_key(source), {"updates": updates, "lastCount": count})
    except (CacheWriteError, TypeError, ValueError):
        logger.warning("could not update %s count metrics", source, exc_info=True)
        return CountCheck(is_valid=True, count=count)

    if not is_valid:
        logger.warning(
            "%s count anomaly: %d records (previous %d, expected %d-%d, max delta %d)",
            source,
            count,
            last_count,
            expectation.min_count,
            expectation.max_count,
            expectation.max_delta,
        )
    return CountCheck(
        is_valid=is_valid,
        count=count,
        delta=delta,
        within_range=within_range,
        history=updates,
    )
