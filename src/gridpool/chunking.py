"""Geographic chunk planner: split a region into a row-major grid of work units.

Chunk ``chunk_{i}_{j}`` starts at ``region.min + index * chunk_size`` on each
axis and ends at ``min(start + chunk_size + overlap, region.max)``. Overlap
only ever extends a chunk toward the region's max edge, so each interior seam
is covered once, by the chunk on its low side.

The planner is pure: no I/O, no shared state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from gridpool.errors import ConfigError
from gridpool.models import BoundingBox, WorkSettings, WorkUnit

# Reference chunk for time estimates: 0.01 deg x 0.01 deg takes ~60 s.
_REFERENCE_AREA = 0.01 * 0.01
_REFERENCE_SECONDS = 60.0
_TERRAIN_FACTOR = 1.5
_INTERIOR_FACTOR = 1.2

# Ratios within this tolerance of an integer count as exact, so that
# 0.1 / 0.05 is 2 cells even though 40.1 - 40.0 is not exactly 0.1.
_GRID_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ChunkConfig:
    """Chunk geometry. Defaults: ~1 km chunks with ~100 m overlap at mid-latitudes."""

    chunk_size_degrees: float = 0.01
    overlap_degrees: float = 0.001

    def __post_init__(self) -> None:
        _validate(self.chunk_size_degrees, self.overlap_degrees)


@dataclass(frozen=True)
class ChunkStats:
    total_chunks: int
    estimated_total_time: float
    estimated_time_per_chunk: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "total_chunks": self.total_chunks,
            "estimated_total_time": self.estimated_total_time,
            "estimated_time_per_chunk": self.estimated_time_per_chunk,
        }


def _validate(chunk_size_degrees: float, overlap_degrees: float) -> None:
    if not math.isfinite(chunk_size_degrees) or chunk_size_degrees <= 0:
        raise ConfigError(
            f"chunk_size_degrees must be > 0, got {chunk_size_degrees!r}"
        )
    if not math.isfinite(overlap_degrees) or overlap_degrees < 0:
        raise ConfigError(f"overlap_degrees must be >= 0, got {overlap_degrees!r}")


def _cell_count(extent: float, size: float) -> int:
    ratio = extent / size
    nearest = round(ratio)
    if math.isclose(ratio, nearest, rel_tol=_GRID_TOLERANCE, abs_tol=_GRID_TOLERANCE):
        return int(nearest)
    return math.ceil(ratio)


def grid_shape(region: BoundingBox, chunk_size_degrees: float) -> tuple[int, int]:
    """Return ``(lat_count, lng_count)`` for *region* at *chunk_size_degrees*."""
    _validate(chunk_size_degrees, 0.0)
    return (
        _cell_count(region.lat_range, chunk_size_degrees),
        _cell_count(region.lng_range, chunk_size_degrees),
    )


def split(
    region: BoundingBox,
    chunk_size_degrees: float,
    overlap_degrees: float,
    settings: WorkSettings | None = None,
) -> list[WorkUnit]:
    """Split *region* into ``lat_count * lng_count`` work units, row-major.

    Args:
        region: Region to partition.
        chunk_size_degrees: Nominal chunk edge length (> 0).
        overlap_degrees: Extra extent added toward the max edge (>= 0).
        settings: Settings copied into every unit (defaults if None).

    Returns:
        Units ordered ``chunk_0_0, chunk_0_1, ..., chunk_1_0, ...``.

    Raises:
        ConfigError: If the chunk size is not positive or overlap is negative.
    """
    _validate(chunk_size_degrees, overlap_degrees)
    settings = settings or WorkSettings()
    lat_count, lng_count = grid_shape(region, chunk_size_degrees)

    units: list[WorkUnit] = []
    for i in range(lat_count):
        chunk_min_lat = region.min_lat + i * chunk_size_degrees
        next_min_lat = region.min_lat + (i + 1) * chunk_size_degrees
        chunk_max_lat = min(next_min_lat + overlap_degrees, region.max_lat)
        if i == lat_count - 1:
            # The tolerant cell count can leave the last edge a rounding error short.
            chunk_max_lat = region.max_lat
        for j in range(lng_count):
            chunk_min_lng = region.min_lng + j * chunk_size_degrees
            next_min_lng = region.min_lng + (j + 1) * chunk_size_degrees
            chunk_max_lng = min(next_min_lng + overlap_degrees, region.max_lng)
            if j == lng_count - 1:
                chunk_max_lng = region.max_lng
            units.append(
                WorkUnit(
                    chunk_id=f"chunk_{i}_{j}",
                    bbox=BoundingBox(chunk_min_lat, chunk_min_lng, chunk_max_lat, chunk_max_lng),
                    settings=settings,
                )
            )
    return units


def estimate_chunk_time(unit: WorkUnit) -> float:
    """Heuristic processing time in seconds. Scheduling hint only."""
    seconds = unit.bbox.area / _REFERENCE_AREA * _REFERENCE_SECONDS
    if unit.settings.terrain:
        seconds *= _TERRAIN_FACTOR
    if unit.settings.interior:
        seconds *= _INTERIOR_FACTOR
    return seconds


def aggregate(units: Iterable[WorkUnit]) -> ChunkStats:
    """Return count, total estimate and mean estimate (0.0 for no units)."""
    units = list(units)
    total = sum(estimate_chunk_time(u) for u in units)
    return ChunkStats(
        total_chunks=len(units),
        estimated_total_time=total,
        estimated_time_per_chunk=total / len(units) if units else 0.0,
    )


class ChunkPlanner:
    """Planner bound to a ``ChunkConfig``.

    Thin object wrapper around ``split()`` so the geometry can be configured
    once (from ``GridpoolConfig.chunking``) and reused.
    """

    def __init__(self, config: ChunkConfig | None = None) -> None:
        self.config = config or ChunkConfig()

    def split(self, region: BoundingBox, settings: WorkSettings | None = None) -> list[WorkUnit]:
        return split(
            region,
            self.config.chunk_size_degrees,
            self.config.overlap_degrees,
            settings,
        )

    def plan(
        self, region: BoundingBox, settings: WorkSettings | None = None
    ) -> tuple[list[WorkUnit], ChunkStats]:
        """Split *region* and return the units with their aggregate estimate."""
        units = self.split(region, settings)
        return units, aggregate(units)
