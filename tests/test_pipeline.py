import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from app.settings import Settings
from diff.engine import hash_key, incidents_key, year_sequence_key
from geo.reference import ReferenceDataResolver
from health.runlog import RunLog
from ingest.collectors.recaap import RecaapCollector
from ingest.collectors.ukmto import UkmtoCollector
from ingest.fetch import FetchOptions
from ingest.handoff import PROCESS_INCIDENTS, claim_next_job
from ingest.pipeline import run_collection
from store.cache import CacheStore
from store.db import Database, close_database, open_database


REFERENCE_YAML = Path(__file__).resolve().parents[1] / "geo" / "data" / "reference.yaml"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@dataclass
class Env:
    db: Database
    store: CacheStore
    run_log: RunLog
    settings: Settings
    resolver: ReferenceDataResolver


@pytest.fixture
def env(tmp_path):
    db = open_database(tmp_path / "pipeline.db")
    store = CacheStore(db)
    try:
        yield Env(
            db=db,
            store=store,
            run_log=RunLog(store),
            settings=Settings(_env_file=None),
            resolver=ReferenceDataResolver(store, REFERENCE_YAML),
        )
    finally:
        close_database(db)


def _recaap(env: Env) -> RecaapCollector:
    options = FetchOptions(max_retries=0)
    return RecaapCollector(url="https://recaap.test/search", options=options, resolver=env.resolver)


def _raw(incident_no: str, day: int = 5, **overrides) -> dict:
    record = {
        "incidentNo": incident_no,
        "fullTimestampOfIncident": int(datetime(2024, 1, day, 10, 30, tzinfo=UTC).timestamp() * 1000),
        "incidentType": "Actual",
        "shipName": f"SHIP {incident_no}",
        "shipType": "Bulk Carrier",
        "positionLatitude": 1.2,
        "positionLongitude": 104.0,
        "attackMethodDesc": "Robbers boarded the vessel.",
        "classification": "CAT 4",
    }
    record.update(overrides)
    return record


def _collect(env: Env, collector, payload, *, now: datetime = NOW, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await run_collection(
                collector,
                client=client,
                store=env.store,
                run_log=env.run_log,
                db=env.db,
                settings=env.settings,
                now=now,
            )

    return asyncio.run(run())


def _stored_ids(env: Env, source: str = "recaap") -> list[str]:
    return [i["sourceId"] for i in env.store.get(incidents_key(source))["incidents"]]


def test_new_records_are_persisted_and_handed_off(env) -> None:
    result = _collect(env, _recaap(env), [_raw("IC-2024-0001"), _raw("IC-2024-0002")])

    assert result.status == "success"
    assert (result.total, result.new) == (2, 2)
    assert _stored_ids(env) == ["RECAAP-IC-2024-0002", "RECAAP-IC-2024-0001"]
    assert env.store.get(hash_key("recaap")) == result.hash

    job = claim_next_job(env.db, PROCESS_INCIDENTS)
    assert job.job_id == result.job_id
    assert job.payload["newIds"] == ["RECAAP-IC-2024-0001", "RECAAP-IC-2024-0002"]

    statuses = [r["status"] for r in env.run_log.entries()]
    assert statuses == ["success", "started"]


def test_rerun_with_identical_payload_is_no_change(env) -> None:
    payload = [_raw("IC-2024-0001"), _raw("IC-2024-0002")]
    first = _collect(env, _recaap(env), payload)
    before = env.store.get(incidents_key("recaap"))["incidents"]

    second = _collect(env, _recaap(env), payload, now=NOW + timedelta(minutes=30))
    assert second.status == "no-change"
    assert second.hash == first.hash
    assert env.store.get(incidents_key("recaap"))["incidents"] == before
    assert env.store.get(hash_key("recaap")) == first.hash


def test_one_extra_record_adds_exactly_one(env) -> None:
    first = _collect(env, _recaap(env), [_raw("IC-2024-0001"), _raw("IC-2024-0002")])
    second = _collect(
        env,
        _recaap(env),
        [_raw("IC-2024-0001"), _raw("IC-2024-0002"), _raw("IC-2024-0003")],
    )

    assert second.status == "success"
    assert (second.new, second.total) == (1, 3)
    assert second.hash != first.hash
    ids = _stored_ids(env)
    assert ids == ["RECAAP-IC-2024-0003", "RECAAP-IC-2024-0002", "RECAAP-IC-2024-0001"]
    assert len(set(ids)) == len(ids)


def test_empty_payload_leaves_stored_set_alone(env) -> None:
    _collect(env, _recaap(env), [_raw("IC-2024-0001")])
    before = env.store.get(incidents_key("recaap"))

    result = _collect(env, _recaap(env), [])
    assert result.status == "no-data"
    assert env.store.get(incidents_key("recaap"))["incidents"] == before["incidents"]
    assert env.run_log.entries()[0]["details"]["outcome"] == "no-data"


def test_stored_set_is_sorted_with_malformed_ids_last(env) -> None:
    _collect(env, _recaap(env), [_raw("IC-2023-0450"), _raw("NOT-AN-ID")])
    _collect(env, _recaap(env), [_raw("IC-2024-0002"), _raw("IC-2024-0010")])

    ids = _stored_ids(env)
    keys = [year_sequence_key(i) for i in ids]
    assert ids[-1] == "RECAAP-NOT-AN-ID"
    assert keys == sorted(keys, reverse=True)
    assert keys[:3] == [2024010, 2024002, 2023450]


def test_missing_description_is_kept_as_invalid(env) -> None:
    result = _collect(env, _recaap(env), [_raw("IC-2024-0001", attackMethodDesc=None)])

    assert result.status == "success"
    stored = env.store.get(incidents_key("recaap"))["incidents"][0]
    assert stored["description"] == ""
    assert stored["_metadata"]["validationStatus"] == "invalid"
    assert any("description" in e for e in stored["_metadata"]["validationErrors"])
    assert result.warnings == {"RECAAP-IC-2024-0001": ["Missing required field: description"]}


def test_strict_source_drops_invalid_records(env) -> None:
    collector = _recaap(env)
    collector.strict_validation = True
    result = _collect(
        env, collector, [_raw("IC-2024-0001", attackMethodDesc=None), _raw("IC-2024-0002")]
    )
    assert result.rejected == 1
    assert _stored_ids(env) == ["RECAAP-IC-2024-0002"]


def test_skipped_records_are_counted(env) -> None:
    result = _collect(env, _recaap(env), [_raw("IC-2024-0001"), {"shipName": "no id"}])
    assert result.status == "success"
    assert result.skipped == 1
    assert env.store.get(incidents_key("recaap"))["metadata"]["skippedCount"] == 1


def test_fetch_failure_is_reported_not_raised(env) -> None:
    result = _collect(env, _recaap(env), {"error": "maintenance"}, status_code=503)

    assert result.status == "error"
    assert "503" in result.message
    assert env.store.get(incidents_key("recaap")) is None
    latest = env.run_log.entries()[0]
    assert latest["status"] == "error"
    assert "503" in latest["details"]["error"]


def test_malformed_payload_is_an_error(env) -> None:
    result = _collect(env, _recaap(env), {"unexpected": "shape"})
    assert result.status == "error"
    assert result.message.startswith("malformed response")
    assert [r["status"] for r in env.run_log.entries()] == ["error", "started"]


def test_count_anomalies_are_reported(env) -> None:
    collector = UkmtoCollector(url="https://ukmto.test/api", options=FetchOptions(max_retries=0))
    payload = [
        {
            "incidentNumber": 1,
            "utcDateOfIncident": "2024-05-30T08:00:00Z",
            "incidentTypeName": "Attack",
            "otherDetails": "Vessel attacked.",
            "locationLatitude": 12.5,
            "locationLongitude": 45.0,
        }
    ]
    result = _collect(env, collector, payload)
    assert result.status == "success"
    assert result.anomalies["count"] == 1
    assert result.anomalies["withinRange"] is False
