import pytest

from diff.engine import (
    ConcurrentUpdateError,
    content_hash,
    date_ordering_key,
    hash_key,
    incidents_key,
    merge_incidents,
    persist_changes,
    year_sequence_key,
)
from store.cache import CacheStore, StaleWriteError
from store.db import close_database, open_database


@pytest.fixture
def store(tmp_path):
    db = open_database(tmp_path / "diff.db")
    try:
        yield CacheStore(db)
    finally:
        close_database(db)


def _incident(source_id: str, date: str = "2024-01-01T00:00:00Z", **extra) -> dict:
    return {
        "sourceId": source_id,
        "dateOccurred": date,
        "title": f"Incident {source_id}",
        "description": "",
        "location": {"region": "other"},
        "category": "",
        **extra,
    }


def _recaap_key(incident: dict) -> int:
    return year_sequence_key(incident["sourceId"])


def test_year_sequence_key() -> None:
    assert year_sequence_key("RECAAP-IC-2024-0012") == 2024012
    assert year_sequence_key("IC-2023-0999") == 2023999
    assert year_sequence_key("RECAAP-garbage") == 0


def test_date_ordering_key_defaults_to_zero() -> None:
    assert date_ordering_key({"dateOccurred": "2024-01-01T00:00:00Z"}) == 1704067200
    assert date_ordering_key({"dateOccurred": "yesterday"}) == 0
    assert date_ordering_key({}) == 0


def test_hash_ignores_order_and_volatile_fields() -> None:
    a = _incident("X-1", _metadata={"standardizedAt": "2024-01-01T00:00:00Z"})
    b = _incident("X-2")
    a_later = {**a, "_metadata": {"standardizedAt": "2024-02-01T00:00:00Z"}}
    assert content_hash([a, b]) == content_hash([b, a_later])
    assert content_hash([a, b]) != content_hash([a, {**b, "title": "changed"}])


def test_merge_keeps_existing_entries_and_sorts() -> None:
    existing = [
        _incident("RECAAP-IC-2024-0002", title="validated earlier"),
        _incident("RECAAP-IC-2024-0001"),
    ]
    candidates = [
        _incident("RECAAP-IC-2024-0002", title="refetched"),
        _incident("RECAAP-IC-2024-0003"),
        _incident("RECAAP-IC-2024-0003"),
    ]
    result = merge_incidents(candidates, existing, ordering_key=_recaap_key)

    assert result.new_ids == ["RECAAP-IC-2024-0003"]
    assert [i["sourceId"] for i in result.incidents] == [
        "RECAAP-IC-2024-0003",
        "RECAAP-IC-2024-0002",
        "RECAAP-IC-2024-0001",
    ]
    assert result.incidents[1]["title"] == "validated earlier"


def test_persist_changes_outcomes(store) -> None:
    empty = persist_changes(
        store, source="recaap", candidates=[], new_hash=content_hash([]), ordering_key=_recaap_key
    )
    assert empty.status == "no-data"
    assert store.get(incidents_key("recaap")) is None

    batch = [_incident("RECAAP-IC-2024-0001"), _incident("RECAAP-IC-2024-0002")]
    first = persist_changes(
        store, source="recaap", candidates=batch, new_hash=content_hash(batch), ordering_key=_recaap_key
    )
    assert first.status == "success"
    assert (first.total, first.new) == (2, 2)
    assert store.get(hash_key("recaap")) == content_hash(batch)

    envelope = store.get(incidents_key("recaap"))
    assert envelope["hash"] == content_hash(batch)
    assert envelope["metadata"]["totalCount"] == 2

    again = persist_changes(
        store, source="recaap", candidates=batch, new_hash=content_hash(batch), ordering_key=_recaap_key
    )
    assert again.status == "no-change"


class RacingStore(CacheStore):
    """Simulates another run writing between our read and our write."""

    def __init__(self, db, *, races: int) -> None:
        super().__init__(db)
        self.races = races

    def compare_and_store(self, key, value, *, expected_revision):
        if self.races > 0:
            self.races -= 1
            self.store(key, {"incidents": [_incident("RECAAP-IC-2024-0009")], "hash": "other"})
        return super().compare_and_store(key, value, expected_revision=expected_revision)


def test_lost_race_remerges_instead_of_overwriting(tmp_path) -> None:
    db = open_database(tmp_path / "race.db")
    try:
        store = RacingStore(db, races=1)
        batch = [_incident("RECAAP-IC-2024-0001")]
        outcome = persist_changes(
            store, source="recaap", candidates=batch, new_hash=content_hash(batch), ordering_key=_recaap_key
        )
        assert outcome.status == "success"
        assert outcome.attempts == 2
        ids = [i["sourceId"] for i in store.get(incidents_key("recaap"))["incidents"]]
        assert ids == ["RECAAP-IC-2024-0009", "RECAAP-IC-2024-0001"]
    finally:
        close_database(db)


def test_gives_up_after_repeated_races(tmp_path) -> None:
    db = open_database(tmp_path / "race.db")
    try:
        store = RacingStore(db, races=5)
        batch = [_incident("RECAAP-IC-2024-0001")]
        with pytest.raises(ConcurrentUpdateError):
            persist_changes(
                store,
                source="recaap",
                candidates=batch,
                new_hash=content_hash(batch),
                ordering_key=_recaap_key,
                attempts=3,
            )
        assert store.get(hash_key("recaap")) is None
    finally:
        close_database(db)


def test_stale_write_error_carries_revisions() -> None:
    error = StaleWriteError("k", 1, 2)
    assert (error.expected, error.actual) == (1, 2)


def test_undecodable_incident_set_is_overwritten(store) -> None:
    old = [_incident("RECAAP-IC-2024-0001")]
    persist_changes(store, source="recaap", candidates=old, new_hash=content_hash(old), ordering_key=_recaap_key)
    with store._db.lock:
        store._db.conn.execute(
            "UPDATE cache_records SET value = ? WHERE key = ?;", ("{not json", incidents_key("recaap"))
        )
        store._db.conn.commit()

    batch = [_incident("RECAAP-IC-2024-0002")]
    outcome = persist_changes(
        store, source="recaap", candidates=batch, new_hash=content_hash(batch), ordering_key=_recaap_key
    )
    assert outcome.status == "success"
    assert outcome.attempts == 1
    ids = [i["sourceId"] for i in store.get(incidents_key("recaap"))["incidents"]]
    assert ids == ["RECAAP-IC-2024-0002"]
