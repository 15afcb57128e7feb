"""Content-keyed asset cache for downloaded geodata.

Layout::

    <cache_root>/<key>/payload     raw bytes
    <cache_root>/<key>/metadata    JSON CacheMetadata

``<key>`` is the bounding box rounded to 6 decimal places (~11 cm). Boxes
that agree to 6 decimals share an entry; that is the cache's resolution
limit, not a collision.

The checksum is CRC32: it catches corruption and partial writes, it is not a
security control. Pass ``digest=`` to substitute another function.

Writes and reads of one key are serialized by a per-key lock, and both files
are written to a temp file and renamed into place, so readers never see a
half-written payload.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from gridpool.errors import IntegrityError, NotFoundError, SerializationError
from gridpool.models import BoundingBox, require_field

log = logging.getLogger(__name__)

PAYLOAD_FILE = "payload"
METADATA_FILE = "metadata"

Digest = Callable[[bytes], str]


def cache_key(bbox: BoundingBox) -> str:
    """Return the directory-safe key for *bbox* (6-decimal resolution).

    Example:
        BoundingBox(40.0, -74.0, 40.1, -73.9) -> "40_000000__74_000000_40_100000__73_900000"
    """
    # Adding 0.0 turns the -0.0 that round() yields for tiny negatives into 0.0.
    parts = [
        f"{round(v, 6) + 0.0:.6f}"
        for v in (bbox.min_lat, bbox.min_lng, bbox.max_lat, bbox.max_lng)
    ]
    return "_".join(parts).replace(".", "_").replace("-", "_")


def checksum(payload: bytes) -> str:
    """Non-cryptographic integrity digest (CRC32, 8 hex chars)."""
    return f"{zlib.crc32(payload) & 0xFFFFFFFF:08x}"


@dataclass(frozen=True)
class CacheMetadata:
    bbox: BoundingBox
    timestamp: int
    data_file: str
    checksum: str
    data_size: int
    download_method: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "bbox": self.bbox.to_dict(),
            "timestamp": self.timestamp,
            "data_file": self.data_file,
            "checksum": self.checksum,
            "data_size": self.data_size,
            "download_method": self.download_method,
        }

    @classmethod
    def from_dict(cls, data: Any) -> CacheMetadata:
        return cls(
            bbox=BoundingBox.from_dict(require_field(data, "bbox", dict, "CacheMetadata")),
            timestamp=require_field(data, "timestamp", int, "CacheMetadata"),
            data_file=require_field(data, "data_file", str, "CacheMetadata"),
            checksum=require_field(data, "checksum", str, "CacheMetadata"),
            data_size=require_field(data, "data_size", int, "CacheMetadata"),
            download_method=require_field(data, "download_method", str, "CacheMetadata"),
        )


def default_cache_dir() -> Path:
    """Resolve the cache root: ``$GRIDPOOL_CACHE_DIR``, XDG cache, or ``~/.cache``."""
    if explicit := os.environ.get("GRIDPOOL_CACHE_DIR"):
        return Path(explicit).expanduser()
    if xdg := os.environ.get("XDG_CACHE_HOME"):
        return Path(xdg).expanduser() / "gridpool"
    return Path.home() / ".cache" / "gridpool"


class _KeyLocks:
    """Lazily created lock per cache key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class AssetCache:
    """Persist and verify downloaded payloads, one directory per bounding box.

    Args:
        cache_dir: Cache root (created if missing). Defaults to
            ``default_cache_dir()``.
        digest: Integrity digest function (defaults to CRC32).
    """

    def __init__(self, cache_dir: Path | str | None = None, digest: Digest = checksum) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._digest = digest
        self._locks = _KeyLocks()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def entry_dir(self, bbox: BoundingBox) -> Path:
        return self.cache_dir / cache_key(bbox)

    def payload_path(self, bbox: BoundingBox) -> Path:
        return self.entry_dir(bbox) / PAYLOAD_FILE

    def metadata_path(self, bbox: BoundingBox) -> Path:
        return self.entry_dir(bbox) / METADATA_FILE

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def save(self, bbox: BoundingBox, payload: bytes, method: str) -> CacheMetadata:
        """Store *payload* for *bbox* and write its metadata record.

        Returns:
            The metadata that was written.
        """
        key = cache_key(bbox)
        entry = self.cache_dir / key
        with self._locks.get(key):
            entry.mkdir(parents=True, exist_ok=True)
            _atomic_write(entry / PAYLOAD_FILE, payload)
            metadata = CacheMetadata(
                bbox=bbox,
                timestamp=int(time.time()),
                data_file=PAYLOAD_FILE,
                checksum=self._digest(payload),
                data_size=len(payload),
                download_method=method,
            )
            _atomic_write(
                entry / METADATA_FILE,
                json.dumps(metadata.to_dict(), indent=2).encode("utf-8"),
            )
        log.debug("Cached %d bytes for %s under %s", len(payload), bbox, key)
        return metadata

    def load(self, bbox: BoundingBox) -> bytes:
        """Return the cached payload for *bbox* after verifying its checksum.

        Raises:
            NotFoundError: If no complete entry exists for *bbox*.
            SerializationError: If the metadata record cannot be parsed.
            IntegrityError: If the payload does not match the stored checksum.
        """
        key = cache_key(bbox)
        entry = self.cache_dir / key
        with self._locks.get(key):
            payload_file = entry / PAYLOAD_FILE
            if not payload_file.is_file():
                raise NotFoundError(f"Cache not found for bounding box {bbox}")
            payload = payload_file.read_bytes()
            metadata = self._read_metadata(entry / METADATA_FILE, bbox)

        actual = self._digest(payload)
        if actual != metadata.checksum:
            raise IntegrityError(
                f"Cache integrity check failed for {bbox}: checksum mismatch "
                f"(stored {metadata.checksum}, computed {actual}). "
                "Clear the entry and download it again."
            )
        return payload

    def has(self, bbox: BoundingBox) -> bool:
        """True iff both the payload and metadata files exist for *bbox*."""
        entry = self.entry_dir(bbox)
        return (entry / PAYLOAD_FILE).is_file() and (entry / METADATA_FILE).is_file()

    def get_metadata(self, bbox: BoundingBox) -> CacheMetadata:
        """Return the metadata record for *bbox*.

        Raises:
            NotFoundError: If no metadata exists for *bbox*.
            SerializationError: If it cannot be parsed.
        """
        return self._read_metadata(self.metadata_path(bbox), bbox)

    def list(self) -> list[CacheMetadata]:
        """Return metadata for every readable entry; unreadable ones are skipped."""
        entries: list[CacheMetadata] = []
        if not self.cache_dir.is_dir():
            return entries
        for entry in sorted(self.cache_dir.iterdir()):
            metadata_file = entry / METADATA_FILE
            if not entry.is_dir() or not metadata_file.is_file():
                continue
            try:
                entries.append(_parse_metadata(metadata_file.read_bytes(), metadata_file))
            except (SerializationError, OSError) as exc:
                log.warning("Skipping unreadable cache entry %s: %s", entry.name, exc)
        return entries

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear(self, bbox: BoundingBox) -> bool:
        """Delete the entry for *bbox*. Returns True if something was removed."""
        key = cache_key(bbox)
        entry = self.cache_dir / key
        with self._locks.get(key):
            if not entry.exists():
                return False
            shutil.rmtree(entry)
        log.info("Cleared cache entry %s", key)
        return True

    def clear_all(self) -> None:
        """Delete every cache entry (the cache root itself is kept)."""
        if self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        log.info("Cleared all cache entries in %s", self.cache_dir)

    def size(self) -> int:
        """Total size in bytes of all files under the cache root."""
        total = 0
        for file_path in self.cache_dir.rglob("*"):
            try:
                if file_path.is_file():
                    total += file_path.stat().st_size
            except OSError:
                continue
        return total

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read_metadata(self, path: Path, bbox: BoundingBox) -> CacheMetadata:
        if not path.is_file():
            raise NotFoundError(f"No cache metadata for bounding box {bbox}")
        return _parse_metadata(path.read_bytes(), path)


def _parse_metadata(raw: bytes, path: Path) -> CacheMetadata:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SerializationError(f"Corrupt cache metadata '{path}': {exc}") from exc
    return CacheMetadata.from_dict(data)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write *data* to a temp file in the same directory, then rename over *path*."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
