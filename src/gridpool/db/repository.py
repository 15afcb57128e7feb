"""Repository pattern for all coordinator database operations.

Single interface for: work units (plan + status), workers, and results.
Status columns are only ever changed through compare-and-swap updates
(``... WHERE status = <expected>``); the caller checks the returned flag to
learn whether it won. Every write runs in ``Repository.transaction()``; a
caller that needs several writes to land together wraps them in one.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from typing import Iterable, Iterator

from gridpool.db.models import UnitRecord
from gridpool.models import (
    BoundingBox,
    WorkerCapabilities,
    WorkerStatus,
    WorkResult,
    WorkSettings,
    WorkUnit,
)
from gridpool.status import WorkStatus


class Repository:
    """Data access layer for all coordinator entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see gridpool.db.schema.initialize).
        """
        self._conn = conn
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements as one ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken before anything is read, so checks made inside
        the block still hold when its writes commit. Nested blocks join the
        outermost one; any exception rolls the whole transaction back.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self._conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()
        finally:
            self._depth = 0

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        with self.transaction():
            return self._conn.execute(sql, params)

    # ------------------------------------------------------------------
    # Work units
    # ------------------------------------------------------------------

    def add_units(self, units: Iterable[WorkUnit], now: float) -> int:
        """Insert *units* as Pending in the given order; existing chunk ids are kept.

        Returns:
            Number of newly inserted units.
        """
        inserted = 0
        with self.transaction():
            start = self._conn.execute(
                "SELECT COALESCE(MAX(seq), -1) + 1 FROM work_units"
            ).fetchone()[0]
            for offset, unit in enumerate(units):
                cur = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO work_units (chunk_id, seq, bbox, settings, status, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        unit.chunk_id,
                        start + offset,
                        json.dumps(unit.bbox.to_dict()),
                        json.dumps(unit.settings.to_dict()),
                        WorkStatus.PENDING.value,
                        now,
                    ),
                )
                inserted += cur.rowcount
        return inserted

    def get_unit(self, chunk_id: str) -> UnitRecord | None:
        """Return the stored unit for *chunk_id*, or None if unknown."""
        row = self._conn.execute(
            """
            SELECT chunk_id, seq, bbox, settings, status, worker_id, updated_at
            FROM work_units WHERE chunk_id = ?
            """,
            (chunk_id,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_units(self) -> list[UnitRecord]:
        """Return all units in plan order."""
        rows = self._conn.execute(
            """
            SELECT chunk_id, seq, bbox, settings, status, worker_id, updated_at
            FROM work_units ORDER BY seq
            """
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_by_status(self) -> dict[WorkStatus, int]:
        """Return ``{status: count}`` with every status present (0 if none)."""
        counts = {status: 0 for status in WorkStatus}
        for row in self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM work_units GROUP BY status"
        ).fetchall():
            counts[WorkStatus(row["status"])] = row["n"]
        return counts

    def chunk_status_map(self) -> dict[str, WorkStatus]:
        rows = self._conn.execute(
            "SELECT chunk_id, status FROM work_units ORDER BY seq"
        ).fetchall()
        return {r["chunk_id"]: WorkStatus(r["status"]) for r in rows}

    def claim_next_pending(self, worker_id: str, now: float) -> WorkUnit | None:
        """Atomically move the first Pending unit (plan order) to Assigned.

        Runs inside ``transaction()``, so the write lock is held before the
        candidate is read, and the UPDATE still re-checks
        ``status = 'Pending'``. Two concurrent claimers can never receive the
        same chunk.

        Returns:
            The claimed unit, or None when nothing is pending.
        """
        with self.transaction():
            row = self._conn.execute(
                """
                SELECT chunk_id, seq, bbox, settings, status, worker_id, updated_at
                FROM work_units WHERE status = ? ORDER BY seq LIMIT 1
                """,
                (WorkStatus.PENDING.value,),
            ).fetchone()
            if row is None:
                return None
            cur = self._conn.execute(
                """
                UPDATE work_units SET status = ?, worker_id = ?, updated_at = ?
                WHERE chunk_id = ? AND status = ?
                """,
                (
                    WorkStatus.ASSIGNED.value,
                    worker_id,
                    now,
                    row["chunk_id"],
                    WorkStatus.PENDING.value,
                ),
            )
            if cur.rowcount != 1:
                return None
            self._conn.execute(
                "UPDATE workers SET current_chunk = ?, last_seen = ? WHERE worker_id = ?",
                (row["chunk_id"], now, worker_id),
            )
        return _row_to_record(row).unit

    def compare_and_set_status(
        self,
        chunk_id: str,
        expected: WorkStatus,
        target: WorkStatus,
        worker_id: str,
        now: float,
    ) -> bool:
        """Set *target* only if the unit is in *expected* and held by *worker_id*.

        Returns:
            True if this call performed the update.
        """
        cur = self._write(
            """
            UPDATE work_units SET status = ?, updated_at = ?
            WHERE chunk_id = ? AND status = ? AND worker_id = ?
            """,
            (target.value, now, chunk_id, expected.value, worker_id),
        )
        return cur.rowcount == 1

    def stalled_units(self, cutoff: float) -> list[UnitRecord]:
        """Return held (Assigned/InProgress) units last updated before *cutoff*."""
        rows = self._conn.execute(
            """
            SELECT chunk_id, seq, bbox, settings, status, worker_id, updated_at
            FROM work_units WHERE status IN (?, ?) AND updated_at < ? ORDER BY seq
            """,
            (WorkStatus.ASSIGNED.value, WorkStatus.IN_PROGRESS.value, cutoff),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def upsert_worker(self, worker_id: str, capabilities: WorkerCapabilities, now: float) -> None:
        """Insert a worker or refresh its capabilities. Progress counters are kept."""
        self._write(
            """
            INSERT INTO workers (worker_id, os, cpu_cores, memory_gb, last_seen)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(worker_id) DO UPDATE SET
                os = excluded.os,
                cpu_cores = excluded.cpu_cores,
                memory_gb = excluded.memory_gb,
                last_seen = excluded.last_seen
            """,
            (worker_id, capabilities.os, capabilities.cpu_cores, capabilities.memory_gb, now),
        )

    def get_worker(self, worker_id: str) -> WorkerStatus | None:
        row = self._conn.execute(
            """
            SELECT worker_id, os, cpu_cores, memory_gb, current_chunk, chunks_completed
            FROM workers WHERE worker_id = ?
            """,
            (worker_id,),
        ).fetchone()
        return _row_to_worker(row) if row else None

    def list_workers(self) -> list[WorkerStatus]:
        """Return all workers ordered by registration time (oldest first)."""
        rows = self._conn.execute(
            """
            SELECT worker_id, os, cpu_cores, memory_gb, current_chunk, chunks_completed
            FROM workers ORDER BY registered_at, worker_id
            """
        ).fetchall()
        return [_row_to_worker(r) for r in rows]

    def release_worker(self, worker_id: str, now: float, completed: bool = False) -> None:
        """Clear the worker's current chunk; bump its counter if *completed*."""
        self._write(
            """
            UPDATE workers SET
                current_chunk = NULL,
                chunks_completed = chunks_completed + ?,
                last_seen = ?
            WHERE worker_id = ?
            """,
            (1 if completed else 0, now, worker_id),
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def add_result(self, worker_id: str, result: WorkResult) -> None:
        """Store the terminal result for a chunk. A chunk has at most one result."""
        self._write(
            """
            INSERT INTO work_results
                (chunk_id, worker_id, status, result_location, error, processing_time)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                result.chunk_id,
                worker_id,
                result.status.value,
                result.result_location,
                result.error,
                result.processing_time,
            ),
        )

    def get_result(self, chunk_id: str) -> WorkResult | None:
        row = self._conn.execute(
            """
            SELECT chunk_id, status, result_location, error, processing_time
            FROM work_results WHERE chunk_id = ?
            """,
            (chunk_id,),
        ).fetchone()
        if row is None:
            return None
        return WorkResult(
            chunk_id=row["chunk_id"],
            status=WorkStatus(row["status"]),
            result_location=row["result_location"],
            error=row["error"],
            processing_time=row["processing_time"],
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_record(row: sqlite3.Row) -> UnitRecord:
    unit = WorkUnit(
        chunk_id=row["chunk_id"],
        bbox=BoundingBox.from_dict(json.loads(row["bbox"])),
        settings=WorkSettings.from_dict(json.loads(row["settings"])),
    )
    return UnitRecord(
        unit=unit,
        status=WorkStatus(row["status"]),
        worker_id=row["worker_id"],
        updated_at=row["updated_at"],
        seq=row["seq"],
    )


def _row_to_worker(row: sqlite3.Row) -> WorkerStatus:
    return WorkerStatus(
        worker_id=row["worker_id"],
        current_chunk=row["current_chunk"],
        chunks_completed=row["chunks_completed"],
        capabilities=WorkerCapabilities(
            os=row["os"],
            cpu_cores=row["cpu_cores"],
            memory_gb=row["memory_gb"],
        ),
    )
