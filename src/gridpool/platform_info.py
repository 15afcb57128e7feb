"""Host capability detection for workers and performance limits."""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass

import psutil

from gridpool.models import WorkerCapabilities

_GIB = 1024**3


@dataclass(frozen=True)
class PlatformInfo:
    os: str
    architecture: str
    logical_cpus: int
    physical_cpus: int
    total_memory_gb: float

    @classmethod
    def detect(cls) -> PlatformInfo:
        logical = psutil.cpu_count(logical=True) or os.cpu_count() or 1
        physical = psutil.cpu_count(logical=False) or logical
        return cls(
            os=platform.system().lower() or "unknown",
            architecture=platform.machine() or "unknown",
            logical_cpus=logical,
            physical_cpus=physical,
            total_memory_gb=psutil.virtual_memory().total / _GIB,
        )

    def capabilities(self) -> WorkerCapabilities:
        """Summary sent to the coordinator at registration (whole GB, floor)."""
        return WorkerCapabilities(
            os=self.os,
            cpu_cores=self.logical_cpus,
            memory_gb=int(self.total_memory_gb),
        )
