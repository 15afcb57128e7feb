"""Row models for the coordinator state store."""

from __future__ import annotations

from dataclasses import dataclass

from gridpool.models import WorkUnit
from gridpool.status import WorkStatus


@dataclass
class UnitRecord:
    unit: WorkUnit
    status: WorkStatus
    worker_id: str | None = None
    updated_at: float = 0.0
    seq: int = 0

    @property
    def chunk_id(self) -> str:
        return self.unit.chunk_id
