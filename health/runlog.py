from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from store.cache import CacheStore, CacheWriteError, StaleWriteError


logger = logging.getLogger(__name__)

RUNS_KEY = "function-runs"
MAX_RECENT_ERRORS = 5


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _runs_of(cached: object) -> list[dict]:
    if not isinstance(cached, dict) or not isinstance(cached.get("runs"), list):
        return []
    return [run for run in cached["runs"] if isinstance(run, dict)]


def _parse_timestamp(ts: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(ts.removesuffix("Z") + ("+00:00" if ts.endswith("Z") else ""))
    except (AttributeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class RunLog:
    """Most-recent-first history of pipeline invocations under ``function-runs``."""

    def __init__(
        self,
        store: CacheStore,
        *,
        capacity: int = 100,
        attempts: int = 3,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._capacity = capacity
        self._attempts = attempts
        self._clock = clock

    def entries(self) -> list[dict]:
        return _runs_of(self._store.get(RUNS_KEY))

    def append(
        self,
        function: str,
        status: str,
        *,
        duration: int | None = None,
        **details,
    ) -> dict:
        entry = {
            "function": function,
            "status": status,
            "timestamp": self._clock().isoformat().replace("+00:00", "Z"),
            "duration": duration,
            "details": details,
        }
        for attempt in range(1, self._attempts + 1):
            cached, revision = self._store.get_with_revision(RUNS_KEY)
            runs = [entry, *_runs_of(cached)][: self._capacity]
            try:
                self._store.compare_and_store(
                    RUNS_KEY, {"runs": runs}, expected_revision=revision
                )
            except StaleWriteError:
                logger.debug("run log changed while recording %s (attempt %d)", function, attempt)
                continue
            except CacheWriteError:
                logger.warning("could not record %s run (%s)", function, status, exc_info=True)
            return entry
        logger.warning(
            "gave up recording %s run (%s) after %d attempts", function, status, self._attempts
        )
        return entry

    def recent(self, hours: float, *, now: datetime | None = None) -> list[dict]:
        cutoff = (now or self._clock()) - timedelta(hours=hours)
        out: list[dict] = []
        for run in self.entries():
            ts = _parse_timestamp(run.get("timestamp"))
            if ts is not None and ts > cutoff:
                out.append(run)
        return out

    def grouped(self, hours: float, *, now: datetime | None = None) -> dict[str, list[dict]]:
        groups: dict[str, list[dict]] = {}
        for run in self.recent(hours, now=now):
            groups.setdefault(str(run.get("function")), []).append(run)
        return groups

    def stats(self, hours: float, *, now: datetime | None = None) -> list[dict]:
        out: list[dict] = []
        for function, runs in self.grouped(hours, now=now).items():
            durations = [r["duration"] for r in runs if isinstance(r.get("duration"), (int, float))]
            errors = [r for r in runs if r.get("status") == "error"]
            out.append(
                {
                    "function": function,
                    "totalRuns": len(runs),
                    "successful": sum(1 for r in runs if r.get("status") == "success"),
                    "failed": len(errors),
                    "averageDuration": round(sum(durations) / len(durations)) if durations else 0,
                    "lastRun": runs[0].get("timestamp"),
                    "recentErrors": [
                        (r.get("details") or {}).get("error") for r in errors[:MAX_RECENT_ERRORS]
                    ],
                }
            )
        return out
