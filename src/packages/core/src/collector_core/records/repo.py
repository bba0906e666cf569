"""Collected record repository (SQLite), sharing the job store's database."""
import json
from typing import Any

from collector_core.jobs.repo import get_conn
from collector_core.util import generate_id, utc_now_iso

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    title TEXT,
    source_url TEXT,
    payload TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (owner_id, external_id)
);
"""


def record_exists(owner_id: str, external_id: str) -> bool:
    """Whether the owner already has a record with this external id."""
    with get_conn() as conn:
        conn.executescript(SCHEMA)
        row = conn.execute(
            "SELECT 1 FROM records WHERE owner_id = ? AND external_id = ?",
            (owner_id, external_id),
        ).fetchone()
        return row is not None


def upsert_record(
    owner_id: str,
    external_id: str,
    title: str,
    source_url: str | None,
    payload: dict[str, Any],
) -> str:
    """Insert or update a record keyed by (owner_id, external_id). Returns its id."""
    now = utc_now_iso()
    with get_conn() as conn:
        conn.executescript(SCHEMA)
        conn.execute(
            """
            INSERT INTO records (id, owner_id, external_id, title, source_url, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(owner_id, external_id) DO UPDATE SET
                title = excluded.title,
                source_url = excluded.source_url,
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (generate_id(), owner_id, external_id, title, source_url, json.dumps(payload), now, now),
        )
        row = conn.execute(
            "SELECT id FROM records WHERE owner_id = ? AND external_id = ?",
            (owner_id, external_id),
        ).fetchone()
        return row["id"]


def get_record(record_id: str) -> dict[str, Any] | None:
    """Get a record by ID."""
    with get_conn() as conn:
        conn.executescript(SCHEMA)
        row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            return None
        record = dict(row)
        record["payload"] = json.loads(record["payload"] or "{}")
        return record
