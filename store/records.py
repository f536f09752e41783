from __future__ import annotations

import json
from datetime import UTC, datetime

from store.db import Database


class IncidentRecords:
    """Processed incidents, one row per ``sourceId``."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find(self, source_id: str) -> dict | None:
        with self._db.lock:
            row = self._db.conn.execute(
                "SELECT record FROM processed_incidents WHERE source_id = ?;",
                (source_id,),
            ).fetchone()
        return json.loads(row["record"]) if row is not None else None

    def append(self, record: dict) -> None:
        now_iso = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
        with self._db.lock:
            self._db.conn.execute(
                """
                INSERT INTO processed_incidents(source_id, source, record, processed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(source_id) DO NOTHING;
                """,
                (
                    str(record["sourceId"]),
                    str(record.get("source") or ""),
                    json.dumps(record, ensure_ascii=False),
                    now_iso,
                ),
            )
            self._db.conn.commit()
