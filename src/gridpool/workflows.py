"""End-to-end flows: cached fetch, download-only, process-only, planning.

Each flow reports milestones through ``Sinks`` and raises ``GridpoolError``
subclasses. ``run_guarded`` turns a raised error into the caller's fatal
policy: exit(1) for non-interactive callers, a returned error value for
interactive ones.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, TypeVar

from gridpool.cache.asset_cache import AssetCache, CacheMetadata
from gridpool.chunking import ChunkConfig, ChunkPlanner, ChunkStats
from gridpool.config import GridpoolConfig
from gridpool.errors import ConfigError, GridpoolError, NotFoundError, SerializationError
from gridpool.models import BoundingBox, WorkSettings, WorkUnit
from gridpool.progress import Sinks
from gridpool.retrieve.overpass import parse_response
from gridpool.retrieve.retriever import DataRetriever
from gridpool.retrieve.transports import get_transport

log = logging.getLogger(__name__)

T = TypeVar("T")

NO_CACHE_MESSAGE = (
    "No cached data found for this bounding box. Run download-only mode first."
)


def build_retriever(
    cfg: GridpoolConfig,
    sinks: Sinks | None = None,
    *,
    use_cache: bool | None = None,
) -> DataRetriever:
    """Assemble a DataRetriever from configuration.

    Args:
        cfg: Loaded configuration.
        sinks: Progress is forwarded to ``sinks.progress`` when given.
        use_cache: Overrides ``cfg.cache.enabled`` when not None.
    """
    enabled = cfg.cache.enabled if use_cache is None else use_cache
    return DataRetriever(
        primary_endpoints=cfg.network.endpoints,
        fallback_endpoints=cfg.network.fallback_endpoints,
        transport=get_transport(cfg.network.download_method, cfg.network.timeout_seconds),
        cache=AssetCache(cfg.cache.resolved_dir()) if enabled else None,
        progress=sinks.progress if sinks is not None else None,
        method=cfg.network.download_method,
        validate=parse_response,
    )


def fetch_with_cache(retriever: DataRetriever, bbox: BoundingBox, sinks: Sinks) -> dict[str, Any]:
    """Return decoded data for *bbox*, from cache if present, else the network.

    Raises:
        NetworkError: If downloading fails (EmptyResponseError when the
            server returned no elements).
        IntegrityError: If the cached payload is corrupt.
    """
    if retriever.cache is not None and retriever.cache.has(bbox):
        sinks.progress(1, "Loading data from cache...")
    else:
        sinks.progress(1, "Fetching data...")
    data = parse_response(retriever.fetch(bbox))
    sinks.progress(5, "")
    return data


def download_only(
    retriever: DataRetriever,
    bbox: BoundingBox,
    sinks: Sinks,
    save_file: Path | None = None,
) -> CacheMetadata:
    """Download *bbox*, validate it, and store it in the cache.

    The raw response is also written to *save_file* when given, before
    validation, so a rejected response can still be inspected.

    Raises:
        ConfigError: If the retriever has no cache.
        NetworkError: If downloading fails or the response is empty.
    """
    if retriever.cache is None:
        raise ConfigError("Download-only mode needs the cache; enable it in gridpool.yaml")
    sinks.progress(1, "Downloading data...")
    payload = retriever.download(bbox)
    if save_file is not None:
        save_file.parent.mkdir(parents=True, exist_ok=True)
        save_file.write_bytes(payload)
        log.info("API response saved to %s", save_file)
    parse_response(payload)
    metadata = retriever.cache.save(bbox, payload, retriever.method)
    sinks.progress(100, "Download complete")
    return metadata


def process_only(cache: AssetCache, bbox: BoundingBox, sinks: Sinks) -> dict[str, Any]:
    """Load previously downloaded data for *bbox* without touching the network.

    Raises:
        NotFoundError: If nothing is cached for *bbox*.
        IntegrityError: If the cached payload is corrupt.
    """
    sinks.progress(1, "Loading from cache...")
    if not cache.has(bbox):
        raise NotFoundError(NO_CACHE_MESSAGE)
    data = parse_response(cache.load(bbox))
    sinks.progress(5, "")
    return data


def load_from_file(path: Path, sinks: Sinks) -> dict[str, Any]:
    """Load a previously saved response file (see ``download_only(save_file=)``).

    Raises:
        NotFoundError: If *path* does not exist.
        SerializationError: If it is not valid JSON.
    """
    sinks.progress(1, "Loading data from file...")
    if not path.is_file():
        raise NotFoundError(f"Data file not found: {path}")
    try:
        return parse_response(path.read_bytes())
    except SerializationError as exc:
        raise SerializationError(f"{path}: {exc}") from exc


def plan_region(
    region: BoundingBox,
    config: ChunkConfig,
    settings: WorkSettings,
    sinks: Sinks,
) -> tuple[list[WorkUnit], ChunkStats]:
    """Partition *region* and estimate its processing time."""
    units, stats = ChunkPlanner(config).plan(region, settings)
    sinks.progress(100, "Partition computed")
    log.info(
        "Partitioned %s into %d chunks (~%.0fs total)",
        region,
        stats.total_chunks,
        stats.estimated_total_time,
    )
    return units, stats


def run_guarded(
    fn: Callable[[], T],
    sinks: Sinks,
    describe: Callable[[GridpoolError], str] = str,
) -> T | GridpoolError:
    """Run *fn*, applying the fatal-error policy to any GridpoolError.

    The error is reported as ``sinks.error(describe(exc))``. Non-interactive
    callers then exit with status 1; interactive callers receive the error
    as the return value.
    """
    try:
        return fn()
    except GridpoolError as exc:
        sinks.error(describe(exc))
        if sinks.interactive():
            return exc
        raise SystemExit(1) from exc
