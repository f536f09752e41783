from __future__ import annotations

import argparse
import asyncio
import json
import sys

import httpx

from app.main import configure_logging
from app.settings import Settings
from geo.reference import ReferenceDataResolver
from health.runlog import RunLog
from ingest.pipeline import CollectionResult, run_collection
from ingest.registry import build_collectors
from store.cache import CacheStore
from store.db import close_database, open_database


async def collect(settings: Settings, sources: list[str]) -> list[CollectionResult]:
    db = open_database(settings.db_path)
    store = CacheStore(
        db,
        ttl_seconds=settings.cache_ttl_seconds,
        reference_ttl_seconds=settings.reference_ttl_seconds,
    )
    run_log = RunLog(store, capacity=settings.run_log_capacity)
    collectors = build_collectors(settings, ReferenceDataResolver(store, settings.reference_data_path))
    results: list[CollectionResult] = []
    try:
        async with httpx.AsyncClient(
            proxy=settings.http_proxy_url, follow_redirects=True
        ) as client:
            for source in sources:
                results.append(
                    await run_collection(
                        collectors[source],
                        client=client,
                        store=store,
                        run_log=run_log,
                        db=db,
                        settings=settings,
                    )
                )
    finally:
        close_database(db)
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Collect incidents from one or more sources.")
    parser.add_argument(
        "sources",
        nargs="+",
        choices=["recaap", "ukmto", "mdat", "icc", "cwd", "all"],
    )
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings)
    sources = args.sources
    if "all" in sources:
        sources = ["recaap", "ukmto", "mdat", "icc", "cwd"]

    results = asyncio.run(collect(settings, sources))
    for result in results:
        print(json.dumps(result.as_dict(), ensure_ascii=False))
    if any(not r.ok for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
