from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from app.settings import Settings
from diff.engine import hash_key, incidents_key
from geo.reference import ReferenceDataResolver
from health.runlog import RunLog
from ingest.collectors.base import SourceCollector
from ingest.pipeline import run_collection
from ingest.registry import build_collectors
from store.cache import CacheStore, CacheWriteError
from store.db import close_database, open_database
from store.maintenance import clear_sources, rollback_recent


logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    configure_logging(settings)
    db = open_database(settings.db_path)
    store = CacheStore(
        db,
        ttl_seconds=settings.cache_ttl_seconds,
        reference_ttl_seconds=settings.reference_ttl_seconds,
    )
    resolver = ReferenceDataResolver(store, settings.reference_data_path)
    client = httpx.AsyncClient(proxy=settings.http_proxy_url, follow_redirects=True)

    app.state.settings = settings
    app.state.db = db
    app.state.store = store
    app.state.run_log = RunLog(store, capacity=settings.run_log_capacity)
    app.state.collectors = build_collectors(settings, resolver)
    app.state.client = client
    try:
        yield
    finally:
        await client.aclose()
        close_database(db)


app = FastAPI(lifespan=lifespan)


def _collector(request: Request, source: str) -> SourceCollector | None:
    collectors: dict[str, SourceCollector] = request.app.state.collectors
    return collectors.get(source.casefold())


def _unknown_source(source: str) -> JSONResponse:
    return JSONResponse(
        {"status": "error", "message": f"unknown source: {source}"}, status_code=404
    )


@app.post("/api/collect/{source}")
async def api_collect(request: Request, source: str) -> JSONResponse:
    collector = _collector(request, source)
    if collector is None:
        return _unknown_source(source)
    result = await run_collection(
        collector,
        client=request.app.state.client,
        store=request.app.state.store,
        run_log=request.app.state.run_log,
        db=request.app.state.db,
        settings=request.app.state.settings,
    )
    return JSONResponse(result.as_dict(), status_code=200 if result.ok else 500)


@app.get("/api/sources")
def api_sources(request: Request) -> JSONResponse:
    collectors: dict[str, SourceCollector] = request.app.state.collectors
    return JSONResponse(
        [
            {
                "name": c.name,
                "label": c.label,
                "function": c.function_name,
                "url": c.url,
                "strictValidation": c.strict_validation,
            }
            for c in collectors.values()
        ]
    )


@app.get("/api/cache/{source}")
def api_cache_summary(request: Request, source: str) -> JSONResponse:
    if _collector(request, source) is None:
        return _unknown_source(source)
    store: CacheStore = request.app.state.store
    summary = store.summary(incidents_key(source.casefold()))
    if summary is None:
        return JSONResponse(
            {"status": "error", "message": f"No cached data found for {source}"},
            status_code=404,
        )
    summary["storedHash"] = store.get(hash_key(source.casefold()))
    return JSONResponse(summary)


@app.delete("/api/cache")
def api_cache_clear(request: Request, source: str | None = None) -> JSONResponse:
    if source is not None and _collector(request, source) is None:
        return _unknown_source(source)
    sources = [source.casefold()] if source else list(request.app.state.collectors)
    try:
        removed = clear_sources(request.app.state.store, sources)
    except CacheWriteError as e:
        logger.error("cache clear failed: %s", e)
        return JSONResponse({"status": "error", "message": str(e)}, status_code=500)
    message = f"Cache cleared for {source}" if source else "All caches cleared"
    return JSONResponse({"status": "success", "message": message, "removed": removed})


@app.post("/api/cache/{source}/rollback")
def api_cache_rollback(
    request: Request, source: str, count: int = Query(default=1, ge=1)
) -> JSONResponse:
    if _collector(request, source) is None:
        return _unknown_source(source)
    try:
        rolled_back = rollback_recent(request.app.state.store, source.casefold(), count)
    except CacheWriteError as e:
        logger.error("rollback of %s failed: %s", source, e)
        return JSONResponse({"status": "error", "message": str(e)}, status_code=500)
    if rolled_back is None:
        return JSONResponse(
            {"status": "error", "message": f"No cached data found for {source}"},
            status_code=404,
        )
    return JSONResponse(
        {
            "status": "success",
            "message": f"Removed {len(rolled_back['removed'])} recent incidents",
            **rolled_back,
        }
    )


@app.get("/api/runs")
def api_runs(request: Request, hours: float = Query(default=24, gt=0)) -> JSONResponse:
    run_log: RunLog = request.app.state.run_log
    if not run_log.entries():
        return JSONResponse(
            {"status": "error", "message": "No run logs found"}, status_code=404
        )
    return JSONResponse(
        {
            "status": "success",
            "timeWindow": f"{hours:g} hours",
            "stats": run_log.stats(hours),
        }
    )
