from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Database:
    conn: sqlite3.Connection
    lock: threading.Lock


_MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version INTEGER NOT NULL PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS cache_records (
          key TEXT NOT NULL PRIMARY KEY,
          value TEXT NOT NULL,
          written_at TEXT NOT NULL,
          revision INTEGER NOT NULL DEFAULT 1,

          item_count INTEGER NULL,
          head TEXT NULL,
          tail TEXT NULL,
          content_hash TEXT NULL
        );

        CREATE INDEX IF NOT EXISTS cache_records_written_at_idx
          ON cache_records(written_at);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS jobs (
          job_id TEXT NOT NULL PRIMARY KEY,
          kind TEXT NOT NULL,
          payload TEXT NOT NULL,
          status TEXT NOT NULL,
          attempts INTEGER NOT NULL DEFAULT 0,
          max_attempts INTEGER NOT NULL DEFAULT 3,
          created_at TEXT NOT NULL,
          updated_at TEXT NOT NULL,
          last_error TEXT NULL
        );

        CREATE INDEX IF NOT EXISTS jobs_kind_status_idx ON jobs(kind, status, created_at);
        """,
    ),
    (
        3,
        """
        CREATE TABLE IF NOT EXISTS processed_incidents (
          source_id TEXT NOT NULL PRIMARY KEY,
          source TEXT NOT NULL,
          record TEXT NOT NULL,
          processed_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS processed_incidents_source_idx
          ON processed_incidents(source, processed_at);
        """,
    ),
]


def open_database(path: Path) -> Database:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    _apply_migrations(conn)
    return Database(conn=conn, lock=threading.Lock())


def close_database(db: Database) -> None:
    with db.lock:
        db.conn.close()


def _apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER NOT NULL PRIMARY KEY);"
    )
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) AS v FROM schema_migrations;"
    ).fetchone()
    current_version = int(row["v"])

    for version, sql in _MIGRATIONS:
        if version <= current_version:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_migrations(version) VALUES (?);", (version,))
        conn.commit()
