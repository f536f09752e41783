from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from diff.engine import incidents_key
from ingest.handoff import PROCESS_INCIDENTS, Job, claim_next_job, complete_job, fail_job
from store.cache import CacheStore
from store.db import Database


logger = logging.getLogger(__name__)

LAST_PROCESSED_KEY = "last-processed-hashes"

Enricher = Callable[[dict], dict]


class RecordStore(Protocol):
    def find(self, source_id: str) -> dict | None: ...

    def append(self, record: dict) -> None: ...


@dataclass
class ProcessingSummary:
    jobs: int = 0
    skipped_jobs: int = 0
    failed_jobs: int = 0
    appended: int = 0
    already_present: int = 0
    fallbacks: int = 0


def fallback_enrichment(incident: dict) -> dict:
    return {
        "title": incident.get("title") or "",
        "description": incident.get("description") or "",
        "analysis": "",
    }


def _enrich(incident: dict, enrich: Enricher, summary: ProcessingSummary) -> dict:
    try:
        return enrich(incident)
    except Exception:
        logger.warning(
            "enrichment failed for %s, using fallback", incident.get("sourceId"), exc_info=True
        )
        summary.fallbacks += 1
        return fallback_enrichment(incident)


def _run_job(
    job: Job,
    store: CacheStore,
    *,
    enrich: Enricher,
    records: RecordStore,
    summary: ProcessingSummary,
) -> None:
    source = str(job.payload["source"])
    job_hash = job.payload.get("hash")

    last_processed = store.get(LAST_PROCESSED_KEY)
    if not isinstance(last_processed, dict):
        last_processed = {}
    if job_hash and last_processed.get(source) == job_hash:
        logger.info("%s hash %s already processed", source, job_hash)
        summary.skipped_jobs += 1
        return

    envelope = store.get(incidents_key(source))
    incidents = envelope.get("incidents") if isinstance(envelope, dict) else None
    if not isinstance(incidents, list):
        logger.info("no cached %s incidents for job %s", source, job.job_id)
        summary.skipped_jobs += 1
        return

    new_ids = set(job.payload.get("newIds") or [])
    for incident in incidents:
        source_id = incident.get("sourceId")
        if new_ids and source_id not in new_ids:
            continue
        if records.find(source_id) is not None:
            summary.already_present += 1
            continue
        enriched = _enrich(incident, enrich, summary)
        records.append({**incident, "enrichment": enriched})
        summary.appended += 1

    last_processed[source] = job_hash
    store.store(LAST_PROCESSED_KEY, last_processed)


def process_pending_jobs(
    db: Database,
    store: CacheStore,
    *,
    enrich: Enricher,
    records: RecordStore,
    limit: int = 10,
) -> ProcessingSummary:
    """Drain up to ``limit`` queued incident-processing jobs."""
    summary = ProcessingSummary()
    for _ in range(limit):
        job = claim_next_job(db, PROCESS_INCIDENTS)
        if job is None:
            break
        summary.jobs += 1
        try:
            _run_job(job, store, enrich=enrich, records=records, summary=summary)
        except Exception as e:
            logger.exception("processing job %s failed", job.job_id)
            fail_job(db, job.job_id, f"{e.__class__.__name__}: {e}")
            summary.failed_jobs += 1
            continue
        complete_job(db, job.job_id)
    return summary
