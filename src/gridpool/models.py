"""Domain models: bounding boxes, work units, results, and worker records.

All models are immutable dataclasses with ``to_dict()`` / ``from_dict()``
for the JSON wire format. ``from_dict()`` raises ``SerializationError`` on
missing fields or wrong types; geometry violations raise ``ConfigError``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from gridpool.errors import ConfigError, SerializationError
from gridpool.status import WorkStatus

# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def require_field(data: Any, key: str, kind: type | tuple[type, ...], record: str) -> Any:
    if not isinstance(data, dict):
        raise SerializationError(f"{record}: expected a JSON object, got {type(data).__name__}")
    if key not in data:
        raise SerializationError(f"{record}: missing field '{key}'")
    value = data[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        raise SerializationError(f"{record}: field '{key}' has wrong type bool")
    if not isinstance(value, kind):
        raise SerializationError(
            f"{record}: field '{key}' has wrong type {type(value).__name__}"
        )
    return value


def optional_field(data: dict, key: str, kind: type, record: str) -> Any:
    if data.get(key) is None:
        return None
    return require_field(data, key, kind, record)


_NUMBER = (int, float)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lng rectangle in degrees.

    Raises:
        ConfigError: If a coordinate is not finite, out of range, or min > max.
    """

    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def __post_init__(self) -> None:
        for name in ("min_lat", "min_lng", "max_lat", "max_lng"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ConfigError(f"Bounding box {name} must be finite, got {value!r}")
        if not (-90.0 <= self.min_lat <= 90.0 and -90.0 <= self.max_lat <= 90.0):
            raise ConfigError(
                f"Latitude out of range [-90, 90]: {self.min_lat}, {self.max_lat}"
            )
        if not (-180.0 <= self.min_lng <= 180.0 and -180.0 <= self.max_lng <= 180.0):
            raise ConfigError(
                f"Longitude out of range [-180, 180]: {self.min_lng}, {self.max_lng}"
            )
        if self.min_lat > self.max_lat:
            raise ConfigError(
                f"Inverted bounding box: min_lat {self.min_lat} > max_lat {self.max_lat}"
            )
        if self.min_lng > self.max_lng:
            raise ConfigError(
                f"Inverted bounding box: min_lng {self.min_lng} > max_lng {self.max_lng}"
            )

    @property
    def lat_range(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_range(self) -> float:
        return self.max_lng - self.min_lng

    @property
    def area(self) -> float:
        """Area in square degrees."""
        return self.lat_range * self.lng_range

    @classmethod
    def parse(cls, text: str) -> BoundingBox:
        """Parse ``"min_lat,min_lng,max_lat,max_lng"``.

        Raises:
            ConfigError: If the string does not hold four numbers.
        """
        parts = [p.strip() for p in text.replace(" ", ",").split(",") if p.strip()]
        if len(parts) != 4:
            raise ConfigError(
                f"Bounding box needs 4 comma-separated numbers "
                f"(min_lat,min_lng,max_lat,max_lng), got {text!r}"
            )
        try:
            values = [float(p) for p in parts]
        except ValueError as exc:
            raise ConfigError(f"Bounding box contains a non-number: {text!r}") from exc
        return cls(*values)

    def to_dict(self) -> dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "min_lng": self.min_lng,
            "max_lat": self.max_lat,
            "max_lng": self.max_lng,
        }

    @classmethod
    def from_dict(cls, data: Any) -> BoundingBox:
        values = [
            float(require_field(data, key, _NUMBER, "BoundingBox"))
            for key in ("min_lat", "min_lng", "max_lat", "max_lng")
        ]
        try:
            return cls(*values)
        except ConfigError as exc:
            raise SerializationError(f"BoundingBox: {exc}") from exc

    def __str__(self) -> str:
        return f"{self.min_lat},{self.min_lng},{self.max_lat},{self.max_lng}"


# ---------------------------------------------------------------------------
# Work units
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkSettings:
    """Processing settings copied into every work unit of a partition."""

    scale: float = 1.0
    terrain: bool = False
    interior: bool = True
    roof: bool = True
    ground_level: int = -62

    def to_dict(self) -> dict[str, Any]:
        return {
            "scale": self.scale,
            "terrain": self.terrain,
            "interior": self.interior,
            "roof": self.roof,
            "ground_level": self.ground_level,
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkSettings:
        return cls(
            scale=float(require_field(data, "scale", _NUMBER, "WorkSettings")),
            terrain=require_field(data, "terrain", bool, "WorkSettings"),
            interior=require_field(data, "interior", bool, "WorkSettings"),
            roof=require_field(data, "roof", bool, "WorkSettings"),
            ground_level=require_field(data, "ground_level", int, "WorkSettings"),
        )


@dataclass(frozen=True)
class WorkUnit:
    """One dispatchable chunk: grid id, its bounding box, and its settings."""

    chunk_id: str
    bbox: BoundingBox
    settings: WorkSettings = field(default_factory=WorkSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "bbox": self.bbox.to_dict(),
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkUnit:
        return cls(
            chunk_id=require_field(data, "chunk_id", str, "WorkUnit"),
            bbox=BoundingBox.from_dict(require_field(data, "bbox", dict, "WorkUnit")),
            settings=WorkSettings.from_dict(require_field(data, "settings", dict, "WorkUnit")),
        )


@dataclass(frozen=True)
class WorkResult:
    """Outcome reported by a worker for one chunk.

    Exactly one of ``result_location`` / ``error`` is set, matching
    ``status`` (Completed needs a location, Failed needs an error).

    Raises:
        SerializationError: If the status is not terminal, the fields do not
            match the status, or ``processing_time`` is negative.
    """

    chunk_id: str
    status: WorkStatus
    result_location: str | None = None
    error: str | None = None
    processing_time: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.status, WorkStatus):
            object.__setattr__(self, "status", WorkStatus.parse(self.status))
        if self.processing_time < 0 or not math.isfinite(self.processing_time):
            raise SerializationError(
                f"WorkResult {self.chunk_id}: processing_time must be >= 0, "
                f"got {self.processing_time}"
            )
        if self.status is WorkStatus.COMPLETED:
            if self.result_location is None or self.error is not None:
                raise SerializationError(
                    f"WorkResult {self.chunk_id}: Completed requires result_location and no error"
                )
        elif self.status is WorkStatus.FAILED:
            if self.error is None or self.result_location is not None:
                raise SerializationError(
                    f"WorkResult {self.chunk_id}: Failed requires error and no result_location"
                )
        else:
            raise SerializationError(
                f"WorkResult {self.chunk_id}: status must be Completed or Failed, "
                f"got {self.status.value}"
            )

    @classmethod
    def completed(cls, chunk_id: str, result_location: str, processing_time: float) -> WorkResult:
        return cls(chunk_id, WorkStatus.COMPLETED, result_location, None, processing_time)

    @classmethod
    def failed(cls, chunk_id: str, error: str, processing_time: float) -> WorkResult:
        return cls(chunk_id, WorkStatus.FAILED, None, error, processing_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "status": self.status.value,
            "result_location": self.result_location,
            "error": self.error,
            "processing_time": self.processing_time,
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkResult:
        return cls(
            chunk_id=require_field(data, "chunk_id", str, "WorkResult"),
            status=WorkStatus.parse(require_field(data, "status", str, "WorkResult")),
            result_location=optional_field(data, "result_location", str, "WorkResult"),
            error=optional_field(data, "error", str, "WorkResult"),
            processing_time=float(require_field(data, "processing_time", _NUMBER, "WorkResult")),
        )


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkerCapabilities:
    """Hardware summary a worker reports at registration."""

    os: str
    cpu_cores: int
    memory_gb: int

    def to_dict(self) -> dict[str, Any]:
        return {"os": self.os, "cpu_cores": self.cpu_cores, "memory_gb": self.memory_gb}

    @classmethod
    def from_dict(cls, data: Any) -> WorkerCapabilities:
        return cls(
            os=require_field(data, "os", str, "WorkerCapabilities"),
            cpu_cores=require_field(data, "cpu_cores", int, "WorkerCapabilities"),
            memory_gb=require_field(data, "memory_gb", int, "WorkerCapabilities"),
        )


@dataclass(frozen=True)
class WorkerStatus:
    worker_id: str
    current_chunk: str | None
    chunks_completed: int
    capabilities: WorkerCapabilities

    @property
    def active(self) -> bool:
        return self.current_chunk is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "current_chunk": self.current_chunk,
            "chunks_completed": self.chunks_completed,
            "capabilities": self.capabilities.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> WorkerStatus:
        return cls(
            worker_id=require_field(data, "worker_id", str, "WorkerStatus"),
            current_chunk=optional_field(data, "current_chunk", str, "WorkerStatus"),
            chunks_completed=require_field(data, "chunks_completed", int, "WorkerStatus"),
            capabilities=WorkerCapabilities.from_dict(
                require_field(data, "capabilities", dict, "WorkerStatus")
            ),
        )
