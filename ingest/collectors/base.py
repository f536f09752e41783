from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from diff.engine import date_ordering_key
from ingest.fetch import FetchOptions


RECORD_ERRORS = (KeyError, ValueError, TypeError, IndexError, AttributeError)
MIN_WINDOW_MARGIN = timedelta(days=2)


@dataclass(frozen=True)
class CollectorRequest:
    url: str
    options: FetchOptions


@dataclass(frozen=True)
class Extraction:
    records: list[dict]
    skipped: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class CountExpectation:
    min_count: int
    max_count: int
    max_delta: int


@dataclass(frozen=True)
class CollectionWindow:
    days: int
    overlap_days: int = 2

    @property
    def span(self) -> timedelta:
        return timedelta(days=self.days + self.overlap_days)

    def start(self, now: datetime) -> datetime:
        return now - self.span


def ensure_window_covers(window: CollectionWindow, interval_minutes: int) -> None:
    required = timedelta(minutes=interval_minutes) + MIN_WINDOW_MARGIN
    if window.span < required:
        raise ValueError(
            f"collection window of {window.span} does not cover the "
            f"{interval_minutes} minute run interval plus a {MIN_WINDOW_MARGIN.days} day margin"
        )


class SourceCollector(ABC):
    name: str = ""
    label: str = ""
    count_expectation: CountExpectation | None = None
    strict_validation: bool = False

    def __init__(self, *, url: str, options: FetchOptions) -> None:
        self.url = url
        self.options = options

    @property
    def function_name(self) -> str:
        return f"collect-{self.name}"

    @abstractmethod
    def build_request(self, now: datetime) -> CollectorRequest: ...

    @abstractmethod
    def extract_records(self, payload: Any) -> Extraction: ...

    def ordering_key(self, incident: dict) -> int:
        return date_ordering_key(incident)

    def _extract_each(
        self,
        raw_records: Iterable[Any],
        parse: Callable[[Any], dict],
    ) -> Extraction:
        records: list[dict] = []
        skipped: list[dict] = []
        for raw in raw_records:
            try:
                records.append(parse(raw))
            except RECORD_ERRORS as e:
                skipped.append(
                    {"record": raw, "error": f"{e.__class__.__name__}: {e}"}
                )
        return Extraction(records=records, skipped=skipped)


def require_field(raw: dict, key: str) -> str:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"missing {key}")
    return str(value).strip()
