from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from app.settings import Settings
from diff.engine import ConcurrentUpdateError, content_hash, persist_changes
from health.metrics import record_count_sample
from health.runlog import RunLog
from ingest.collectors.base import SourceCollector
from ingest.fetch import FetchError, fetch_payload, retry_budget_seconds
from ingest.handoff import PROCESS_INCIDENTS, enqueue_job
from ingest.parsers.json import MalformedResponseError
from normalize.standardize import standardize_incident
from normalize.validate import validate_incident
from store.cache import CacheStore, CacheWriteError
from store.db import Database


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionResult:
    status: str
    source: str
    message: str
    total: int = 0
    new: int = 0
    skipped: int = 0
    rejected: int = 0
    hash: str | None = None
    job_id: str | None = None
    anomalies: dict | None = None
    warnings: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != "error"

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "source": self.source,
            "message": self.message,
            "total": self.total,
            "new": self.new,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "hash": self.hash,
            "jobId": self.job_id,
            "anomalies": self.anomalies,
            "warnings": self.warnings,
        }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def run_collection(
    collector: SourceCollector,
    *,
    client: httpx.AsyncClient,
    store: CacheStore,
    run_log: RunLog,
    db: Database,
    settings: Settings,
    now: datetime | None = None,
) -> CollectionResult:
    """Run one collection for a source and report the outcome.

    Failures are caught here and turned into an ``error`` result; the
    traceback only goes to the log. The run log gets one ``started`` entry
    and exactly one terminal entry per call.
    """
    now = now or datetime.now(tz=UTC)
    started = time.monotonic()
    function = collector.function_name
    run_log.append(function, "started", source=collector.label)

    try:
        result = await _collect(
            collector, client=client, store=store, db=db, settings=settings, now=now
        )
    except FetchError as e:
        logger.warning("%s fetch failed after %d attempt(s): %s", collector.label, e.attempts, e)
        result = CollectionResult(status="error", source=collector.label, message=str(e))
    except MalformedResponseError as e:
        logger.warning("%s returned a malformed payload: %s", collector.label, e)
        result = CollectionResult(
            status="error", source=collector.label, message=f"malformed response: {e}"
        )
    except (CacheWriteError, ConcurrentUpdateError) as e:
        logger.error("%s could not persist incidents: %s", collector.label, e)
        result = CollectionResult(status="error", source=collector.label, message=str(e))
    except Exception as e:
        logger.exception("%s collection failed", collector.label)
        result = CollectionResult(
            status="error",
            source=collector.label,
            message=f"unexpected {e.__class__.__name__}: {e}",
        )

    duration = _elapsed_ms(started)
    if result.ok:
        run_log.append(
            function,
            "success",
            duration=duration,
            source=collector.label,
            outcome=result.status,
            itemsProcessed=result.total,
            newItems=result.new,
            skipped=result.skipped,
        )
        logger.info(
            "%s %s: %d total, %d new, %d skipped in %dms",
            collector.label,
            result.status,
            result.total,
            result.new,
            result.skipped,
            duration,
        )
    else:
        run_log.append(
            function,
            "error",
            duration=duration,
            source=collector.label,
            error=result.message,
        )
    return result


async def _collect(
    collector: SourceCollector,
    *,
    client: httpx.AsyncClient,
    store: CacheStore,
    db: Database,
    settings: Settings,
    now: datetime,
) -> CollectionResult:
    request = collector.build_request(now)
    budget = retry_budget_seconds(request.options)
    if budget > settings.invocation_budget_seconds:
        logger.warning(
            "%s worst-case fetch time %.1fs exceeds the %.1fs invocation budget",
            collector.label,
            budget,
            settings.invocation_budget_seconds,
        )

    payload = await fetch_payload(client, request.url, request.options)
    extraction = collector.extract_records(payload)
    for skipped in extraction.skipped:
        logger.info("%s skipped record: %s", collector.label, skipped["error"])

    anomalies = None
    if collector.count_expectation is not None:
        seen = len(extraction.records) + len(extraction.skipped)
        check = record_count_sample(store, collector.name, seen, collector.count_expectation)
        if not check.is_valid:
            anomalies = check.as_dict()

    standardized_at = now.isoformat().replace("+00:00", "Z")
    candidates: list[dict] = []
    warnings: dict[str, list[str]] = {}
    rejected = 0
    for record in extraction.records:
        incident = standardize_incident(
            record,
            source_name=collector.label,
            source_url=collector.url,
            now=standardized_at,
        )
        validated = validate_incident(
            incident, source=collector.label, strict=collector.strict_validation, now=now
        )
        if validated.warnings:
            warnings[incident["sourceId"] or "<missing>"] = list(validated.warnings)
        if not validated.accepted:
            rejected += 1
            continue
        candidates.append(validated.value)

    skipped_count = len(extraction.skipped) + rejected
    new_hash = content_hash(candidates)
    outcome = persist_changes(
        store,
        source=collector.name,
        candidates=candidates,
        new_hash=new_hash,
        ordering_key=collector.ordering_key,
        skipped_count=skipped_count,
        attempts=settings.merge_attempts,
    )

    if outcome.status == "no-data":
        message = f"No valid {collector.label} incidents found."
    elif outcome.status == "no-change":
        message = "No new incidents to process."
    else:
        message = f"New {collector.label} incidents processed."

    job_id = None
    if outcome.status == "success":
        try:
            job_id = enqueue_job(
                db,
                PROCESS_INCIDENTS,
                {"source": collector.name, "hash": outcome.hash, "newIds": list(outcome.new_ids)},
            )
        except sqlite3.Error:
            logger.warning("could not queue follow-up for %s", collector.label, exc_info=True)

    return CollectionResult(
        status=outcome.status,
        source=collector.label,
        message=message,
        total=outcome.total or len(candidates),
        new=outcome.new,
        skipped=skipped_count,
        rejected=rejected,
        hash=outcome.hash,
        job_id=job_id,
        anomalies=anomalies,
        warnings=warnings,
    )
