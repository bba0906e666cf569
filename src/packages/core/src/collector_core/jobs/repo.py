"""Job repository using SQLite.

The jobs table is the single source of truth for job state. Every writer that
advances a job's counts must hold the job's ``loop_token``; control operations
change ``status`` with compare-and-set updates so concurrent requests cannot
both win.
"""
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterable

import structlog

from collector_core.jobs.models import Job, JobItem, JobItemStatus, JobMode, JobStats, JobStatus
from collector_core.util import StoreError, generate_id, utc_now_iso, epoch_now

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    input_spec TEXT NOT NULL,
    mode TEXT NOT NULL DEFAULT 'collect_sync',
    status TEXT NOT NULL DEFAULT 'pending',
    total_target INTEGER NOT NULL,
    current_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    error_message TEXT,
    loop_token TEXT,
    heartbeat_at REAL,
    created_at TEXT,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_owner ON jobs(owner_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS job_items (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    external_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    linked_record_id TEXT,
    error_code TEXT,
    error_message TEXT,
    failed_at TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_job_items_job ON job_items(job_id);
CREATE INDEX IF NOT EXISTS idx_job_items_status ON job_items(status);
"""

_JOB_FIELDS = {
    "status",
    "current_count",
    "success_count",
    "failed_count",
    "started_at",
    "completed_at",
    "error_message",
    "loop_token",
    "heartbeat_at",
}
_ITEM_FIELDS = {
    "external_id",
    "status",
    "linked_record_id",
    "error_code",
    "error_message",
    "failed_at",
}


def _get_sqlite_path() -> str:
    return os.environ.get("SQLITE_PATH", "/data/collector.db")


@contextmanager
def get_conn():
    """Get a database connection. sqlite errors surface as StoreError."""
    path = _get_sqlite_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    try:
        conn = sqlite3.connect(path, timeout=10)
    except sqlite3.Error as e:
        raise StoreError(f"Job store unavailable: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        conn.executescript(SCHEMA)
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("job_store_error", path=path, error=str(e))
        raise StoreError(f"Job store error: {e}") from e
    finally:
        conn.close()


def init_db():
    """Initialize the database."""
    with get_conn():
        pass


def _values(values: Iterable[Any]) -> list[Any]:
    return [v.value if isinstance(v, (JobStatus, JobItemStatus, JobMode)) else v for v in values]


def _assignments(fields: dict[str, Any], allowed: set[str]) -> tuple[str, list[Any]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")
    cols = list(fields)
    clause = ", ".join(f"{c} = ?" for c in cols)
    return clause, _values(fields[c] for c in cols)


def create_job(
    owner_id: str,
    input_spec: str,
    total_target: int,
    mode: JobMode = JobMode.COLLECT_SYNC,
) -> Job:
    """Insert a pending job."""
    job_id = generate_id()
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO jobs (id, owner_id, input_spec, mode, status, total_target,
                              current_count, success_count, failed_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, 0, 0, ?, ?)
            """,
            _values((job_id, owner_id, input_spec, mode, JobStatus.PENDING, total_target, now, now)),
        )
    return get_job(job_id)


def get_job(job_id: str) -> Job | None:
    """Get a job by ID."""
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return Job(**dict(row))


def list_jobs(owner_id: str | None = None, active_only: bool = False, limit: int = 20) -> list[Job]:
    """List jobs, running first, then paused, then the most recently updated."""
    where = []
    params: list[Any] = []
    if owner_id is not None:
        where.append("owner_id = ?")
        params.append(owner_id)
    if active_only:
        where.append("status IN ('running', 'paused')")
    sql = "SELECT * FROM jobs"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += """
        ORDER BY
            CASE status
                WHEN 'running' THEN 0
                WHEN 'paused' THEN 1
                WHEN 'pending' THEN 2
                ELSE 3
            END,
            updated_at DESC
        LIMIT ?
    """
    params.append(limit)
    with get_conn() as conn:
        rows = conn.execute(sql, params).fetchall()
        return [Job(**dict(r)) for r in rows]


def transition_job(
    job_id: str,
    from_statuses: Iterable[JobStatus],
    to_status: JobStatus,
    **fields: Any,
) -> bool:
    """Compare-and-set a job's status. Returns False if the job was not in from_statuses."""
    from_list = _values(from_statuses)
    fields = {**fields, "status": to_status}
    clause, params = _assignments(fields, _JOB_FIELDS)
    placeholders = ", ".join("?" for _ in from_list)
    with get_conn() as conn:
        cur = conn.execute(
            f"UPDATE jobs SET {clause}, updated_at = ? WHERE id = ? AND status IN ({placeholders})",
            [*params, utc_now_iso(), job_id, *from_list],
        )
        return cur.rowcount == 1


def reset_job(job_id: str, from_statuses: Iterable[JobStatus]) -> bool:
    """Zero the counts and set running. Clears loop ownership so any old loop retires."""
    return transition_job(
        job_id,
        from_statuses,
        JobStatus.RUNNING,
        current_count=0,
        success_count=0,
        failed_count=0,
        started_at=utc_now_iso(),
        completed_at=None,
        error_message=None,
        loop_token=None,
        heartbeat_at=None,
    )


def claim_loop(job_id: str, token: str, stale_before: float, replace_token: str | None = None) -> bool:
    """Take ownership of a job's loop if nobody holds a fresh claim.

    ``replace_token`` names a holder known to be dead; its claim is taken over
    even if its heartbeat is still fresh.
    """
    with get_conn() as conn:
        cur = conn.execute(
            """
            UPDATE jobs SET loop_token = ?, heartbeat_at = ?, updated_at = ?
            WHERE id = ?
              AND (loop_token IS NULL OR loop_token = ? OR loop_token = ?
                   OR heartbeat_at IS NULL OR heartbeat_at < ?)
            """,
            (token, epoch_now(), utc_now_iso(), job_id, token, replace_token, stale_before),
        )
        return cur.rowcount == 1


def release_loop(job_id: str, token: str) -> None:
    """Drop ownership if still held by token."""
    with get_conn() as conn:
        conn.execute(
            "UPDATE jobs SET loop_token = NULL, heartbeat_at = NULL WHERE id = ? AND loop_token = ?",
            (job_id, token),
        )


def heartbeat(job_id: str, token: str) -> bool:
    """Refresh the loop heartbeat. False means the token was superseded."""
    with get_conn() as conn:
        cur = conn.execute(
            "UPDATE jobs SET heartbeat_at = ? WHERE id = ? AND loop_token = ?",
            (epoch_now(), job_id, token),
        )
        return cur.rowcount == 1


def update_job_progress(
    job_id: str,
    token: str,
    current_count: int,
    success_count: int,
    failed_count: int,
) -> bool:
    """Persist counts. False means another loop (or a restart) owns the job now."""
    now = utc_now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            UPDATE jobs
            SET current_count = ?, success_count = ?, failed_count = ?,
                heartbeat_at = ?, updated_at = ?
            WHERE id = ? AND loop_token = ?
            """,
            (current_count, success_count, failed_count, epoch_now(), now, job_id, token),
        )
        return cur.rowcount == 1


def complete_job(job_id: str, token: str) -> bool:
    """Mark a running or paused job completed, only from the owning loop."""
    now = utc_now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            UPDATE jobs SET status = 'completed', completed_at = ?, updated_at = ?
            WHERE id = ? AND loop_token = ? AND status IN ('running', 'paused')
            """,
            (now, now, job_id, token),
        )
        return cur.rowcount == 1


def fail_job(job_id: str, message: str, token: str | None = None) -> bool:
    """Mark a non-terminal job failed.

    With ``token``, only while that loop (or no loop) owns the job, so a
    superseded loop cannot fail a job another loop is running.
    """
    now = utc_now_iso()
    sql = """
        UPDATE jobs SET status = 'failed', error_message = ?, completed_at = ?, updated_at = ?
        WHERE id = ? AND status IN ('pending', 'running', 'paused')
    """
    params: list[Any] = [message[:1000], now, now, job_id]
    if token is not None:
        sql += " AND (loop_token = ? OR loop_token IS NULL)"
        params.append(token)
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.rowcount == 1


def list_orphaned_jobs(stale_before: float) -> list[Job]:
    """Running jobs whose loop has not heartbeated since stale_before."""
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT * FROM jobs
            WHERE status = 'running'
              AND (loop_token IS NULL OR heartbeat_at IS NULL OR heartbeat_at < ?)
            ORDER BY updated_at
            """,
            (stale_before,),
        ).fetchall()
        return [Job(**dict(r)) for r in rows]


def list_running_jobs() -> list[Job]:
    """Every running job, owned or not."""
    with get_conn() as conn:
        rows = conn.execute("SELECT * FROM jobs WHERE status = 'running' ORDER BY updated_at").fetchall()
        return [Job(**dict(r)) for r in rows]


def job_stats(since: str | None = None, owner_id: str | None = None) -> JobStats:
    """Item totals and job counts per status for jobs created at or after since."""
    where = []
    params: list[Any] = []
    if since is not None:
        where.append("created_at >= ?")
        params.append(since)
    if owner_id is not None:
        where.append("owner_id = ?")
        params.append(owner_id)
    sql = """
        SELECT
            COUNT(*) AS total_jobs,
            COALESCE(SUM(success_count), 0) AS total_success,
            COALESCE(SUM(failed_count), 0) AS total_failed,
            COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending_jobs,
            COALESCE(SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END), 0) AS running_jobs,
            COALESCE(SUM(CASE WHEN status = 'paused' THEN 1 ELSE 0 END), 0) AS paused_jobs,
            COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_jobs,
            COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed_jobs,
            COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled_jobs
        FROM jobs
    """
    if where:
        sql += " WHERE " + " AND ".join(where)
    with get_conn() as conn:
        row = conn.execute(sql, params).fetchone()
        return JobStats(since=since, **dict(row))


def create_job_item(job_id: str, position: int) -> JobItem:
    """Insert a pending item for the given offset."""
    item_id = generate_id()
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO job_items (id, job_id, position, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (item_id, job_id, position, JobItemStatus.PENDING.value, now, now),
        )
    return JobItem(
        id=item_id,
        job_id=job_id,
        position=position,
        status=JobItemStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


def update_job_item(item_id: str, **fields: Any) -> None:
    """Update item columns."""
    clause, params = _assignments(fields, _ITEM_FIELDS)
    with get_conn() as conn:
        conn.execute(
            f"UPDATE job_items SET {clause}, updated_at = ? WHERE id = ?",
            [*params, utc_now_iso(), item_id],
        )


def get_job_item(item_id: str) -> JobItem | None:
    """Get an item by ID."""
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM job_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return None
        return JobItem(**dict(row))


def list_job_items(
    job_id: str,
    status: JobItemStatus | None = None,
    limit: int = 100,
) -> list[JobItem]:
    """List a job's items in offset order."""
    sql = "SELECT * FROM job_items WHERE job_id = ?"
    params: list[Any] = [job_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(status.value)
    sql += " ORDER BY position, created_at LIMIT ?"
    params.append(limit)
    with get_conn() as conn:
        rows = conn.execute(sql, params).fetchall()
        return [JobItem(**dict(r)) for r in rows]
