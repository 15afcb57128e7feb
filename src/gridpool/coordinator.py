"""Coordinator: owns chunk assignment and aggregate status.

Implements the four protocol operations (register, request work, submit
result, status) over the SQLite state store. Every operation opens its own
connection, so the coordinator can be shared by threads of a transport
binding or run as several processes against one database file.

Each operation runs in one ``Repository.transaction()`` (``BEGIN IMMEDIATE``):
its checks and all of its writes land together or not at all. Inside it,
status changes are still compare-and-swap updates.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from gridpool import protocol
from gridpool.db.connection import Database
from gridpool.db.repository import Repository
from gridpool.db.schema import initialize
from gridpool.errors import NotFoundError, SerializationError, TransitionError
from gridpool.models import WorkResult, WorkUnit
from gridpool.protocol import (
    RegisterWorkerRequest,
    RegisterWorkerResponse,
    StatusRequest,
    StatusResponse,
    SubmitResultRequest,
    SubmitResultResponse,
    WorkerStatusSummary,
    WorkRequest,
    WorkResponse,
)
from gridpool.status import WorkStatus, transition

log = logging.getLogger(__name__)

DataUrlResolver = Callable[[WorkUnit], "str | None"]


class Coordinator:
    """Protocol handler backed by a coordinator database.

    Args:
        db: ``Database`` or path to the SQLite file.
        coordinator_id: Identifier returned at registration (random if None).
        data_url_for: Optional callable mapping a unit to a URL the worker can
            download the chunk's input data from. None means workers fetch
            their own data.
        clock: Time source in unix seconds (injectable for tests).
    """

    def __init__(
        self,
        db: Database | Path | str,
        coordinator_id: str | None = None,
        data_url_for: DataUrlResolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db if isinstance(db, Database) else Database(db)
        self.coordinator_id = coordinator_id or f"coordinator-{uuid.uuid4().hex[:8]}"
        self._data_url_for = data_url_for
        self._clock = clock
        conn = self._db.connect()
        try:
            initialize(conn)
        finally:
            conn.close()

    @contextmanager
    def _session(self) -> Iterator[Repository]:
        conn = self._db.connect()
        try:
            yield Repository(conn)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def load_plan(self, units: Iterable[WorkUnit]) -> int:
        """Seed Pending units. Already-known chunk ids are left untouched.

        Returns:
            Number of newly added units.
        """
        with self._session() as repo:
            added = repo.add_units(units, self._clock())
        log.info("Loaded %d new work units", added)
        return added

    # ------------------------------------------------------------------
    # Protocol operations
    # ------------------------------------------------------------------

    def register_worker(self, request: RegisterWorkerRequest) -> RegisterWorkerResponse:
        """Register or re-register a worker. Idempotent; never rejects a valid request."""
        with self._session() as repo, repo.transaction():
            known = repo.get_worker(request.worker_id) is not None
            repo.upsert_worker(request.worker_id, request.capabilities, self._clock())
        log.info(
            "%s worker %s (%s, %d cores, %d GB)",
            "Refreshed" if known else "Registered",
            request.worker_id,
            request.capabilities.os,
            request.capabilities.cpu_cores,
            request.capabilities.memory_gb,
        )
        return RegisterWorkerResponse(
            status=protocol.STATUS_REGISTERED, coordinator_id=self.coordinator_id
        )

    def request_work(self, request: WorkRequest) -> WorkResponse:
        """Hand the worker its next unit, or an empty response if none is pending.

        A worker that already holds a unit gets the same unit back; a worker
        holds at most one unit at a time.

        Raises:
            NotFoundError: If the worker has not registered.
        """
        with self._session() as repo, repo.transaction():
            worker = repo.get_worker(request.worker_id)
            if worker is None:
                raise NotFoundError(
                    f"Worker '{request.worker_id}' is not registered. Register before requesting work."
                )
            unit = self._held_unit(repo, request.worker_id, worker.current_chunk)
            if unit is None:
                unit = self._claim(repo, request.worker_id)
        if unit is None:
            return WorkResponse()
        return WorkResponse(work_unit=unit, osm_data_url=self._url_for(unit))

    def start_work(self, worker_id: str, chunk_id: str) -> None:
        """Mark a unit the worker holds as InProgress (Assigned -> InProgress).

        Raises:
            NotFoundError: If the chunk is unknown.
            TransitionError: If the worker does not hold the chunk, or it is
                not Assigned.
        """
        with self._session() as repo, repo.transaction():
            record = repo.get_unit(chunk_id)
            if record is None:
                raise NotFoundError(f"Unknown chunk '{chunk_id}'")
            if record.worker_id != worker_id:
                raise TransitionError(
                    f"Chunk {chunk_id} is not assigned to worker '{worker_id}'"
                )
            target = transition(record.status, WorkStatus.IN_PROGRESS, chunk_id)
            self._swap(repo, chunk_id, record.status, target, worker_id)

    def submit_result(self, request: SubmitResultRequest) -> SubmitResultResponse:
        """Record a terminal result and piggyback the worker's next unit.

        The chunk must be Assigned or InProgress and held by the submitting
        worker. An Assigned chunk is advanced through InProgress first.
        The status change, stored result, worker release and next claim
        commit together; if any step fails none of them is applied.

        Raises:
            NotFoundError: If the worker or chunk is unknown.
            TransitionError: If the chunk is not currently held by this worker.
        """
        result = request.result
        worker_id = request.worker_id
        with self._session() as repo, repo.transaction():
            if repo.get_worker(worker_id) is None:
                raise NotFoundError(f"Worker '{worker_id}' is not registered.")
            record = repo.get_unit(result.chunk_id)
            if record is None:
                raise NotFoundError(f"Unknown chunk '{result.chunk_id}'")
            if not record.status.is_held or record.worker_id != worker_id:
                raise TransitionError(
                    f"Result for {result.chunk_id} rejected: chunk is {record.status.value}"
                    + (f" and held by '{record.worker_id}'" if record.worker_id else "")
                    + f", not held by '{worker_id}'"
                )

            current = record.status
            if current is WorkStatus.ASSIGNED:
                current = self._swap(
                    repo,
                    result.chunk_id,
                    current,
                    transition(current, WorkStatus.IN_PROGRESS, result.chunk_id),
                    worker_id,
                )
            self._swap(
                repo,
                result.chunk_id,
                current,
                transition(current, result.status, result.chunk_id),
                worker_id,
            )
            repo.add_result(worker_id, result)
            repo.release_worker(
                worker_id, self._clock(), completed=result.status is WorkStatus.COMPLETED
            )
            next_unit = self._claim(repo, worker_id)
        log.info(
            "Chunk %s %s by %s in %.1fs",
            result.chunk_id,
            result.status.value.lower(),
            worker_id,
            result.processing_time,
        )
        return SubmitResultResponse(status=protocol.STATUS_ACCEPTED, next_work=next_unit)

    def status(self, request: StatusRequest | None = None) -> StatusResponse:
        """Return a read-only snapshot of chunk and worker state."""
        with self._session() as repo:
            counts = repo.count_by_status()
            chunk_status = repo.chunk_status_map()
            workers = repo.list_workers()
        active = sum(1 for w in workers if w.active)
        return StatusResponse(
            total_chunks=sum(counts.values()),
            completed=counts[WorkStatus.COMPLETED],
            in_progress=counts[WorkStatus.ASSIGNED] + counts[WorkStatus.IN_PROGRESS],
            pending=counts[WorkStatus.PENDING],
            failed=counts[WorkStatus.FAILED],
            workers=WorkerStatusSummary(
                active=active, idle=len(workers) - active, workers=workers
            ),
            chunk_status=chunk_status,
        )

    # ------------------------------------------------------------------
    # Extension points
    # ------------------------------------------------------------------

    def reclaim_stalled(self, timeout_seconds: float, now: float | None = None) -> list[str]:
        """Fail held chunks that have not changed for *timeout_seconds*.

        Stalled chunks are marked Failed with an error result and their worker
        is released. Retrying them is left to the caller (a fresh plan run).

        Returns:
            Chunk ids that were reclaimed.
        """
        now = self._clock() if now is None else now
        reclaimed: list[str] = []
        with self._session() as repo, repo.transaction():
            for record in repo.stalled_units(now - timeout_seconds):
                worker_id = record.worker_id or ""
                current = record.status
                if current is WorkStatus.ASSIGNED:
                    current = self._swap(
                        repo, record.chunk_id, current,
                        transition(current, WorkStatus.IN_PROGRESS, record.chunk_id),
                        worker_id,
                    )
                self._swap(
                    repo, record.chunk_id, current,
                    transition(current, WorkStatus.FAILED, record.chunk_id),
                    worker_id,
                )
                repo.add_result(
                    worker_id,
                    WorkResult.failed(
                        record.chunk_id,
                        f"stalled: no result within {timeout_seconds:g}s",
                        max(0.0, now - record.updated_at),
                    ),
                )
                repo.release_worker(worker_id, now)
                reclaimed.append(record.chunk_id)
        if reclaimed:
            log.warning("Reclaimed %d stalled chunks: %s", len(reclaimed), ", ".join(reclaimed))
        return reclaimed

    def result_for(self, chunk_id: str) -> WorkResult:
        """Return the stored result for *chunk_id*.

        Raises:
            NotFoundError: If no result has been submitted.
        """
        with self._session() as repo:
            result = repo.get_result(chunk_id)
        if result is None:
            raise NotFoundError(f"No result recorded for chunk '{chunk_id}'")
        return result

    def handle(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Dispatch a decoded JSON request to the matching operation.

        Entry point for transport bindings: takes and returns plain dicts.

        Raises:
            SerializationError: If *operation* is unknown or *payload* is malformed.
        """
        if operation == "register_worker":
            return self.register_worker(RegisterWorkerRequest.from_dict(payload)).to_dict()
        if operation == "request_work":
            return self.request_work(WorkRequest.from_dict(payload)).to_dict()
        if operation == "submit_result":
            return self.submit_result(SubmitResultRequest.from_dict(payload)).to_dict()
        if operation == "status":
            return self.status(StatusRequest.from_dict(payload)).to_dict()
        raise SerializationError(f"Unknown coordinator operation '{operation}'")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _held_unit(
        self, repo: Repository, worker_id: str, chunk_id: str | None
    ) -> WorkUnit | None:
        if chunk_id is None:
            return None
        record = repo.get_unit(chunk_id)
        if record is None or not record.status.is_held or record.worker_id != worker_id:
            return None
        return record.unit

    def _claim(self, repo: Repository, worker_id: str) -> WorkUnit | None:
        unit = repo.claim_next_pending(worker_id, self._clock())
        if unit is not None:
            log.debug("Assigned %s to %s", unit.chunk_id, worker_id)
        return unit

    def _swap(
        self,
        repo: Repository,
        chunk_id: str,
        expected: WorkStatus,
        target: WorkStatus,
        worker_id: str,
    ) -> WorkStatus:
        if not repo.compare_and_set_status(chunk_id, expected, target, worker_id, self._clock()):
            raise TransitionError(
                f"Chunk {chunk_id} changed state concurrently; "
                f"expected {expected.value} held by '{worker_id}'"
            )
        return target

    def _url_for(self, unit: WorkUnit) -> str | None:
        if self._data_url_for is None:
            return None
        return self._data_url_for(unit)
