from datetime import UTC, datetime, timedelta

import pytest

from health.runlog import RUNS_KEY, RunLog
from store.cache import CacheStore, CacheWriteError
from store.db import close_database, open_database


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db(tmp_path):
    db = open_database(tmp_path / "runs.db")
    try:
        yield db
    finally:
        close_database(db)


def test_newest_first_and_capped(db) -> None:
    run_log = RunLog(CacheStore(db), capacity=3)
    for n in range(5):
        run_log.append("collect-recaap", "success", duration=n)
    assert [r["duration"] for r in run_log.entries()] == [4, 3, 2]


def test_stats_per_function(db) -> None:
    clock = FakeClock()
    store = CacheStore(db, ttl_seconds=7 * 24 * 3600, clock=clock)
    run_log = RunLog(store, clock=clock)

    clock.now -= timedelta(hours=30)
    run_log.append("collect-ukmto", "error", duration=100, error="too old")
    clock.now += timedelta(hours=30)

    run_log.append("collect-ukmto", "started")
    run_log.append("collect-ukmto", "error", duration=300, error="HTTP 503")
    run_log.append("collect-ukmto", "started")
    run_log.append("collect-ukmto", "success", duration=100)
    run_log.append("collect-cwd", "success", duration=50)

    stats = {s["function"]: s for s in run_log.stats(24)}
    ukmto = stats["collect-ukmto"]
    assert ukmto["totalRuns"] == 4
    assert ukmto["successful"] == 1
    assert ukmto["failed"] == 1
    assert ukmto["averageDuration"] == 200
    assert ukmto["recentErrors"] == ["HTTP 503"]
    assert ukmto["lastRun"] == "2024-06-01T12:00:00Z"
    assert stats["collect-cwd"]["totalRuns"] == 1

    assert len(run_log.recent(48)) == 6


class FailingStore(CacheStore):
    def compare_and_store(self, key, value, *, expected_revision):
        raise CacheWriteError("disk full")


def test_write_failures_do_not_raise(db) -> None:
    run_log = RunLog(FailingStore(db))
    entry = run_log.append("collect-icc", "started")
    assert entry["status"] == "started"
    assert run_log.entries() == []
    assert CacheStore(db).get(RUNS_KEY) is None


class InterleavingStore(CacheStore):
    """Lets another process record a run between our read and our write."""

    def __init__(self, db, *, races: int) -> None:
        super().__init__(db)
        self.races = races

    def compare_and_store(self, key, value, *, expected_revision):
        if self.races > 0:
            self.races -= 1
            RunLog(CacheStore(self._db)).append("collect-mdat", "success", duration=10)
        return super().compare_and_store(key, value, expected_revision=expected_revision)


def test_concurrent_appends_keep_both_entries(db) -> None:
    run_log = RunLog(InterleavingStore(db, races=1))
    run_log.append("collect-recaap", "success", duration=20)
    assert [r["function"] for r in run_log.entries()] == ["collect-recaap", "collect-mdat"]


def test_append_gives_up_after_repeated_races(db) -> None:
    run_log = RunLog(InterleavingStore(db, races=5), attempts=2)
    entry = run_log.append("collect-recaap", "success")
    assert entry["function"] == "collect-recaap"
    assert [r["function"] for r in run_log.entries()] == ["collect-mdat", "collect-mdat"]
