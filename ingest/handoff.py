from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from store.db import Database


logger = logging.getLogger(__name__)

PROCESS_INCIDENTS = "process-incidents"


@dataclass(frozen=True)
class Job:
    job_id: str
    kind: str
    payload: dict
    attempts: int
    max_attempts: int


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def enqueue_job(
    db: Database, kind: str, payload: dict[str, Any], *, max_attempts: int = 3
) -> str:
    job_id = uuid.uuid4().hex
    now_iso = _utc_now_iso()
    with db.lock:
        db.conn.execute(
            """
            INSERT INTO jobs(job_id, kind, payload, status, attempts, max_attempts, created_at, updated_at)
            VALUES (?, ?, ?, 'pending', 0, ?, ?, ?);
            """,
            (job_id, kind, json.dumps(payload), max_attempts, now_iso, now_iso),
        )
        db.conn.commit()
    logger.info("queued %s job %s", kind, job_id)
    return job_id


def claim_next_job(db: Database, kind: str) -> Job | None:
    with db.lock:
        row = db.conn.execute(
            """
            SELECT job_id, kind, payload, attempts, max_attempts
            FROM jobs
            WHERE kind = ? AND status = 'pending'
            ORDER BY created_at ASC, rowid ASC
            LIMIT 1;
            """,
            (kind,),
        ).fetchone()
        if row is None:
            return None
        db.conn.execute(
            "UPDATE jobs SET status = 'running', attempts = attempts + 1, updated_at = ? WHERE job_id = ?;",
            (_utc_now_iso(), row["job_id"]),
        )
        db.conn.commit()
    return Job(
        job_id=str(row["job_id"]),
        kind=str(row["kind"]),
        payload=json.loads(row["payload"]),
        attempts=int(row["attempts"]) + 1,
        max_attempts=int(row["max_attempts"]),
    )


def complete_job(db: Database, job_id: str) -> None:
    with db.lock:
        db.conn.execute(
            "UPDATE jobs SET status = 'done', last_error = NULL, updated_at = ? WHERE job_id = ?;",
            (_utc_now_iso(), job_id),
        )
        db.conn.commit()


def fail_job(db: Database, job_id: str, error: str) -> str:
    """Return the job to the queue, or mark it failed once attempts are used up."""
    with db.lock:
        row = db.conn.execute(
            "SELECT attempts, max_attempts FROM jobs WHERE job_id = ?;", (job_id,)
        ).fetchone()
        if row is None:
            return "missing"
        status = "failed" if int(row["attempts"]) >= int(row["max_attempts"]) else "pending"
        db.conn.execute(
            "UPDATE jobs SET status = ?, last_error = ?, updated_at = ? WHERE job_id = ?;",
            (status, error, _utc_now_iso(), job_id),
        )
        db.conn.commit()
    if status == "failed":
        logger.warning("job %s failed permanently: %s", job_id, error)
    return status


def job_status(db: Database, job_id: str) -> str | None:
    with db.lock:
        row = db.conn.execute(
            "SELECT status FROM jobs WHERE job_id = ?;", (job_id,)
        ).fetchone()
    return str(row["status"]) if row is not None else None


def prune_finished_jobs(db: Database, *, older_than: datetime) -> int:
    cutoff = older_than.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")
    with db.lock:
        cur = db.conn.execute(
            "DELETE FROM jobs WHERE status IN ('done', 'failed') AND updated_at < ?;",
            (cutoff,),
        )
        db.conn.commit()
    if cur.rowcount:
        logger.info("pruned %d finished jobs", cur.rowcount)
    return cur.rowcount
