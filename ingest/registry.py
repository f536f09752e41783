from __future__ import annotations

from app.settings import Settings
from geo.reference import ReferenceDataResolver
from ingest.collectors.base import SourceCollector, ensure_window_covers
from ingest.collectors.cwd import CwdCollector
from ingest.collectors.icc import IccCollector
from ingest.collectors.mdat import MdatCollector
from ingest.collectors.recaap import RecaapCollector
from ingest.collectors.ukmto import UkmtoCollector
from ingest.fetch import FetchOptions


def base_fetch_options(settings: Settings) -> FetchOptions:
    return FetchOptions(
        headers={"User-Agent": settings.user_agent},
        timeout=settings.http_timeout_seconds,
        max_retries=settings.fetch_max_retries,
        retry_delay=settings.fetch_retry_delay_seconds,
    )


def build_collectors(
    settings: Settings, resolver: ReferenceDataResolver
) -> dict[str, SourceCollector]:
    options = base_fetch_options(settings)

    collectors: list[SourceCollector] = [
        RecaapCollector(url=settings.recaap_url, options=options, resolver=resolver),
        UkmtoCollector(url=settings.ukmto_url, options=options),
        MdatCollector(url=settings.mdat_url, options=options),
        IccCollector(url=settings.icc_url, options=options, resolver=resolver),
        CwdCollector(url=settings.cwd_url, options=options, resolver=resolver),
    ]

    ensure_window_covers(MdatCollector.window, settings.collection_interval_minutes)

    strict = settings.strict_source_names()
    for collector in collectors:
        if collector.name in strict:
            collector.strict_validation = True
    return {collector.name: collector for collector in collectors}
