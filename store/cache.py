from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from store.db import Database


logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "reference-"


class CacheWriteError(Exception):
    pass


class StaleWriteError(CacheWriteError):
    def __init__(self, key: str, expected: int | None, actual: int | None) -> None:
        super().__init__(
            f"revision mismatch for {key}: expected {expected}, found {actual}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _to_iso(dt: datetime) -> str:
    return dt.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")


def _parse_iso(ts: str) -> datetime:
    if ts.endswith("Z"):
        return datetime.fromisoformat(ts.removesuffix("Z") + "+00:00")
    return datetime.fromisoformat(ts)


class CacheStore:
    """Key/value blobs in sqlite with write timestamps and lazy expiry.

    Reads degrade to a miss when the database misbehaves; writes raise
    ``CacheWriteError`` since a lost write is a lost invocation.
    """

    def __init__(
        self,
        db: Database,
        *,
        ttl_seconds: int = 3600,
        reference_ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._db = db
        self._ttl = timedelta(seconds=ttl_seconds)
        self._reference_ttl = timedelta(seconds=reference_ttl_seconds)
        self._clock = clock

    def ttl_for(self, key: str) -> timedelta:
        if key.startswith(REFERENCE_PREFIX):
            return self._reference_ttl
        return self._ttl

    def _is_stale(self, key: str, written_at: str, now: datetime) -> bool:
        try:
            written = _parse_iso(written_at)
        except ValueError:
            return True
        return now - written > self.ttl_for(key)

    def get(self, key: str) -> Any | None:
        value, _ = self.get_with_revision(key)
        return value

    def get_with_revision(self, key: str) -> tuple[Any | None, int | None]:
        now = self._clock()
        try:
            with self._db.lock:
                row = self._db.conn.execute(
                    "SELECT value, written_at, revision FROM cache_records WHERE key = ?;",
                    (key,),
                ).fetchone()
                if row is None:
                    logger.debug("cache miss: %s", key)
                    return None, None
                if self._is_stale(key, str(row["written_at"]), now):
                    self._db.conn.execute(
                        "DELETE FROM cache_records WHERE key = ?;", (key,)
                    )
                    self._db.conn.commit()
                    logger.info("cache expired: %s", key)
                    return None, None
            value = json.loads(row["value"])
        except sqlite3.Error:
            logger.warning("cache read failed for %s, treating as miss", key, exc_info=True)
            return None, None
        except ValueError:
            logger.warning("cache record %s is not valid JSON, treating as miss", key)
            return None, int(row["revision"])
        return value, int(row["revision"])

    def store(self, key: str, value: Any) -> int:
        now_iso = _to_iso(self._clock())
        columns = _record_columns(value, now_iso)
        try:
            with self._db.lock:
                try:
                    revision = self._upsert(key, now_iso, columns)
                    self._db.conn.commit()
                except sqlite3.Error:
                    self._rollback()
                    raise
        except sqlite3.Error as e:
            raise CacheWriteError(f"failed to store {key}: {e}") from e
        logger.debug("cache stored: %s (revision %d)", key, revision)
        return revision

    def compare_and_store(
        self, key: str, value: Any, *, expected_revision: int | None
    ) -> int:
        now = self._clock()
        now_iso = _to_iso(now)
        columns = _record_columns(value, now_iso)
        try:
            with self._db.lock:
                try:
                    self._db.conn.execute("BEGIN IMMEDIATE;")
                    row = self._db.conn.execute(
                        "SELECT written_at, revision FROM cache_records WHERE key = ?;",
                        (key,),
                    ).fetchone()
                    current: int | None = None
                    if row is not None and not self._is_stale(
                        key, str(row["written_at"]), now
                    ):
                        current = int(row["revision"])
                    if current != expected_revision:
                        self._db.conn.rollback()
                        raise StaleWriteError(key, expected_revision, current)
                    revision = self._upsert(key, now_iso, columns)
                    self._db.conn.commit()
                except sqlite3.Error:
                    self._rollback()
                    raise
        except sqlite3.Error as e:
            raise CacheWriteError(f"failed to store {key}: {e}") from e
        return revision

    def delete(self, key: str) -> bool:
        try:
            with self._db.lock:
                cur = self._db.conn.execute(
                    "DELETE FROM cache_records WHERE key = ?;", (key,)
                )
                self._db.conn.commit()
        except sqlite3.Error as e:
            raise CacheWriteError(f"failed to delete {key}: {e}") from e
        return cur.rowcount > 0

    def summary(self, key: str) -> dict | None:
        now = self._clock()
        try:
            with self._db.lock:
                row = self._db.conn.execute(
                    """
                    SELECT written_at, revision, item_count, head, tail, content_hash
                    FROM cache_records
                    WHERE key = ?;
                    """,
                    (key,),
                ).fetchone()
                if row is None:
                    return None
                if self._is_stale(key, str(row["written_at"]), now):
                    self._db.conn.execute(
                        "DELETE FROM cache_records WHERE key = ?;", (key,)
                    )
                    self._db.conn.commit()
                    return None
        except sqlite3.Error:
            logger.warning("cache summary failed for %s", key, exc_info=True)
            return None

        return {
            "key": key,
            "count": row["item_count"],
            "hash": row["content_hash"],
            "first": json.loads(row["head"]) if row["head"] is not None else None,
            "last": json.loads(row["tail"]) if row["tail"] is not None else None,
            "timestamp": row["written_at"],
            "revision": int(row["revision"]),
        }

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with self._db.lock:
                rows = self._db.conn.execute(
                    "SELECT key FROM cache_records WHERE substr(key, 1, ?) = ? ORDER BY key;",
                    (len(prefix), prefix),
                ).fetchall()
        except sqlite3.Error:
            logger.warning("cache key listing failed", exc_info=True)
            return []
        return [str(r["key"]) for r in rows]

    def _upsert(self, key: str, now_iso: str, columns: tuple) -> int:
        payload, item_count, head, tail, content_hash = columns
        self._db.conn.execute(
            """
            INSERT INTO cache_records(
              key, value, written_at, revision, item_count, head, tail, content_hash
            )
            VALUES (?, ?, ?, 1, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              value = excluded.value,
              written_at = excluded.written_at,
              revision = cache_records.revision + 1,
              item_count = excluded.item_count,
              head = excluded.head,
              tail = excluded.tail,
              content_hash = excluded.content_hash;
            """,
            (key, payload, now_iso, item_count, head, tail, content_hash),
        )
        row = self._db.conn.execute(
            "SELECT revision FROM cache_records WHERE key = ?;", (key,)
        ).fetchone()
        return int(row["revision"])

    def _rollback(self) -> None:
        if self._db.conn.in_transaction:
            self._db.conn.rollback()


def _record_columns(
    value: Any, now_iso: str
) -> tuple[str, int | None, str | None, str | None, str | None]:
    item_count = None
    head = None
    tail = None
    content_hash = None
    if isinstance(value, dict) and isinstance(value.get("incidents"), list):
        value = {**value, "timestamp": now_iso}
        incidents = value["incidents"]
        item_count = len(incidents)
        if incidents:
            head = json.dumps(incidents[0], ensure_ascii=False)
            tail = json.dumps(incidents[-1], ensure_ascii=False)
        hash_value = value.get("hash")
        content_hash = str(hash_value) if hash_value is not None else None
    return (
        json.dumps(value, ensure_ascii=False),
        item_count,
        head,
        tail,
        content_hash,
    )
