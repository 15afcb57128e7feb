"""Coordinator-worker wire messages.

Transport-agnostic request/response records. Each message converts to and
from a plain JSON-compatible dict; ``encode()`` / ``decode()`` add the JSON
text step. Field names are the wire names.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, TypeVar

from gridpool.errors import SerializationError
from gridpool.models import (
    WorkerCapabilities,
    WorkerStatus,
    WorkResult,
    WorkUnit,
    require_field,
)
from gridpool.status import WorkStatus

STATUS_REGISTERED = "registered"
STATUS_ACCEPTED = "accepted"


@dataclass(frozen=True)
class RegisterWorkerRequest:
    worker_id: str
    capabilities: WorkerCapabilities

    def to_dict(self) -> dict[str, Any]:
        return {"worker_id": self.worker_id, "capabilities": self.capabilities.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> RegisterWorkerRequest:
        return cls(
            worker_id=require_field(data, "worker_id", str, "RegisterWorkerRequest"),
            capabilities=WorkerCapabilities.from_dict(
                require_field(data, "capabilities", dict, "RegisterWorkerRequest")
            ),
        )


@dataclass(frozen=True)
class RegisterWorkerResponse:
    status: str
    coordinator_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "coordinator_id": self.coordinator_id}

    @classmethod
    def from_dict(cls, data: Any) -> RegisterWorkerResponse:
        return cls(
            status=require_field(data, "status", str, "RegisterWorkerResponse"),
            coordinator_id=require_field(data, "coordinator_id", str, "RegisterWorkerResponse"),
        )


@dataclass(frozen=True)
class WorkRequest:
    worker_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"worker_id": self.worker_id}

    @classmethod
    def from_dict(cls, data: Any) -> WorkRequest:
        return cls(worker_id=require_field(data, "worker_id", str, "WorkRequest"))


@dataclass(frozen=True)
class WorkResponse:
    """``work_unit`` is None when no work is available (not an error).

    ``osm_data_url`` may be None even with a unit; the worker then fetches
    the chunk's data itself.
    """

    work_unit: WorkUnit | None = None
    osm_data_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_unit": self.work_unit.to_dict() if self.work_unit else None,
            "osm_data_url": self.osm_data_url,
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkResponse:
        if not isinstance(data, dict):
            raise SerializationError("WorkResponse: expected a JSON object")
        raw_unit = data.get("work_unit")
        url = data.get("osm_data_url")
        if url is not None and not isinstance(url, str):
            raise SerializationError("WorkResponse: field 'osm_data_url' has wrong type")
        return cls(
            work_unit=WorkUnit.from_dict(raw_unit) if raw_unit is not None else None,
            osm_data_url=url,
        )


@dataclass(frozen=True)
class SubmitResultRequest:
    worker_id: str
    result: WorkResult

    def to_dict(self) -> dict[str, Any]:
        return {"worker_id": self.worker_id, "result": self.result.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> SubmitResultRequest:
        return cls(
            worker_id=require_field(data, "worker_id", str, "SubmitResultRequest"),
            result=WorkResult.from_dict(require_field(data, "result", dict, "SubmitResultRequest")),
        )


@dataclass(frozen=True)
class SubmitResultResponse:
    """``next_work`` piggybacks the worker's following assignment, if any."""

    status: str
    next_work: WorkUnit | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "next_work": self.next_work.to_dict() if self.next_work else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SubmitResultResponse:
        status = require_field(data, "status", str, "SubmitResultResponse")
        raw_next = data.get("next_work")
        return cls(
            status=status,
            next_work=WorkUnit.from_dict(raw_next) if raw_next is not None else None,
        )


@dataclass(frozen=True)
class StatusRequest:
    def to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Any) -> StatusRequest:
        if not isinstance(data, dict):
            raise SerializationError("StatusRequest: expected a JSON object")
        return cls()


@dataclass(frozen=True)
class WorkerStatusSummary:
    """``active`` workers hold a chunk; ``idle`` workers do not."""

    active: int = 0
    idle: int = 0
    workers: list[WorkerStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "idle": self.idle,
            "workers": [w.to_dict() for w in self.workers],
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkerStatusSummary:
        return cls(
            active=require_field(data, "active", int, "WorkerStatusSummary"),
            idle=require_field(data, "idle", int, "WorkerStatusSummary"),
            workers=[
                WorkerStatus.from_dict(w)
                for w in require_field(data, "workers", list, "WorkerStatusSummary")
            ],
        )


@dataclass(frozen=True)
class StatusResponse:
    """Read-only snapshot of the coordinator. Assigned chunks count as in progress."""

    total_chunks: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    failed: int = 0
    workers: WorkerStatusSummary = field(default_factory=WorkerStatusSummary)
    chunk_status: dict[str, WorkStatus] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "pending": self.pending,
            "failed": self.failed,
            "workers": self.workers.to_dict(),
            "chunk_status": {k: v.value for k, v in self.chunk_status.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> StatusResponse:
        raw_status = require_field(data, "chunk_status", dict, "StatusResponse")
        return cls(
            total_chunks=require_field(data, "total_chunks", int, "StatusResponse"),
            completed=require_field(data, "completed", int, "StatusResponse"),
            in_progress=require_field(data, "in_progress", int, "StatusResponse"),
            pending=require_field(data, "pending", int, "StatusResponse"),
            failed=require_field(data, "failed", int, "StatusResponse"),
            workers=WorkerStatusSummary.from_dict(
                require_field(data, "workers", dict, "StatusResponse")
            ),
            chunk_status={
                str(k): WorkStatus.parse(v) if isinstance(v, str) else _bad_status(k)
                for k, v in raw_status.items()
            },
        )


def _bad_status(chunk_id: str) -> WorkStatus:
    raise SerializationError(f"StatusResponse: chunk_status[{chunk_id!r}] is not a string")


# ---------------------------------------------------------------------------
# JSON text helpers
# ---------------------------------------------------------------------------

M = TypeVar("M")


def encode(message: Any) -> str:
    """Serialize any protocol message (or model) to compact JSON text."""
    return json.dumps(message.to_dict(), separators=(",", ":"), sort_keys=True)


def decode(cls: type[M], text: str | bytes) -> M:
    """Parse JSON *text* into an instance of *cls*.

    Raises:
        SerializationError: If the text is not valid JSON or does not match *cls*.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SerializationError(f"{cls.__name__}: invalid JSON: {exc}") from exc
    return cls.from_dict(data)  # type: ignore[attr-defined]
