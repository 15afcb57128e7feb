"""Forward-only migration runner for the coordinator schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS work_units (
    chunk_id        TEXT PRIMARY KEY,
    seq             INTEGER NOT NULL,
    bbox            TEXT NOT NULL,
    settings        TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'Pending',
    worker_id       TEXT,
    updated_at      REAL NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_work_units_status_seq ON work_units (status, seq);

CREATE TABLE IF NOT EXISTS workers (
    worker_id        TEXT PRIMARY KEY,
    os               TEXT NOT NULL,
    cpu_cores        INTEGER NOT NULL,
    memory_gb        INTEGER NOT NULL,
    current_chunk    TEXT REFERENCES work_units(chunk_id),
    chunks_completed INTEGER NOT NULL DEFAULT 0,
    registered_at    DATETIME NOT NULL DEFAULT (datetime('now')),
    last_seen        REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS work_results (
    chunk_id        TEXT PRIMARY KEY REFERENCES work_units(chunk_id) ON DELETE CASCADE,
    worker_id       TEXT NOT NULL,
    status          TEXT NOT NULL,
    result_location TEXT,
    error           TEXT,
    processing_time REAL NOT NULL,
    submitted_at    DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
