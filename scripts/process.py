from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from datetime import UTC, datetime, timedelta

from app.main import configure_logging
from app.settings import Settings
from ingest.handoff import prune_finished_jobs
from ingest.processing import ProcessingSummary, fallback_enrichment, process_pending_jobs
from store.cache import CacheStore
from store.db import close_database, open_database
from store.records import IncidentRecords


def drain(
    settings: Settings, *, limit: int, retention_days: int
) -> tuple[ProcessingSummary, int]:
    db = open_database(settings.db_path)
    try:
        store = CacheStore(
            db,
            ttl_seconds=settings.cache_ttl_seconds,
            reference_ttl_seconds=settings.reference_ttl_seconds,
        )
        summary = process_pending_jobs(
            db,
            store,
            enrich=fallback_enrichment,
            records=IncidentRecords(db),
            limit=limit,
        )
        pruned = prune_finished_jobs(
            db, older_than=datetime.now(tz=UTC) - timedelta(days=retention_days)
        )
    finally:
        close_database(db)
    return summary, pruned


def main() -> None:
    settings = Settings()
    parser = argparse.ArgumentParser(description="Process queued incident handoff jobs.")
    parser.add_argument("--limit", type=int, default=settings.process_batch_size)
    parser.add_argument("--retention-days", type=int, default=settings.jobs_retention_days)
    args = parser.parse_args()

    configure_logging(settings)
    summary, pruned = drain(settings, limit=args.limit, retention_days=args.retention_days)
    print(json.dumps({**asdict(summary), "pruned_jobs": pruned}))


if __name__ == "__main__":
    main()
