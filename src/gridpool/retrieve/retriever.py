"""DataRetriever: fetch a bounding box's payload with cache-aside and one fallback.

Fetch order for ``fetch(bbox)``:

1. Cache enabled and an entry exists: return the verified cached payload.
2. A random primary endpoint, once.
3. On FetchError, a random fallback endpoint, once.
4. Both failed: NetworkError chaining the last FetchError.

Retrying beyond the single fallback is left to the caller.
"""

from __future__ import annotations

import logging
import random
from typing import Callable, Sequence

from gridpool.cache.asset_cache import AssetCache
from gridpool.errors import ConfigError, FetchError, NetworkError
from gridpool.models import BoundingBox
from gridpool.progress import ProgressSink
from gridpool.retrieve.overpass import build_query
from gridpool.retrieve.transports import Transport

log = logging.getLogger(__name__)


class DataRetriever:
    """Download geodata for bounding boxes.

    Args:
        primary_endpoints: Endpoints tried first (one picked at random).
        fallback_endpoints: Endpoints tried once after a primary failure.
        transport: ``(endpoint, query) -> bytes``; raises FetchError.
        cache: Optional AssetCache; None disables caching.
        progress: Optional progress sink.
        rng: Random source for endpoint choice (injectable for tests).
        method: Download method name recorded in cache metadata.
        validate: Optional check run on a downloaded payload before it is
            cached; raising from it keeps the payload out of the cache.
    """

    def __init__(
        self,
        primary_endpoints: Sequence[str],
        fallback_endpoints: Sequence[str],
        transport: Transport,
        cache: AssetCache | None = None,
        progress: ProgressSink | None = None,
        rng: random.Random | None = None,
        method: str = "requests",
        validate: Callable[[bytes], object] | None = None,
    ) -> None:
        if not primary_endpoints:
            raise ConfigError("At least one primary endpoint is required")
        self.primary_endpoints = list(primary_endpoints)
        self.fallback_endpoints = list(fallback_endpoints)
        self.transport = transport
        self.cache = cache
        self.method = method
        self.validate = validate
        self._progress = progress
        self._rng = rng or random.Random()

    def fetch(self, bbox: BoundingBox) -> bytes:
        """Return the payload for *bbox*, from cache when available.

        Raises:
            NetworkError: If the primary and the fallback attempt both fail.
            IntegrityError: If the cached payload fails its checksum.
        """
        if self.cache is not None and self.cache.has(bbox):
            log.info("Cache hit for %s", bbox)
            return self.cache.load(bbox)

        if self.cache is not None:
            log.info("Cache miss for %s", bbox)
        payload = self.download(bbox)
        if self.validate is not None:
            self.validate(payload)
        if self.cache is not None:
            self.cache.save(bbox, payload, self.method)
        return payload

    def download(self, bbox: BoundingBox) -> bytes:
        """Fetch *bbox* from the network, ignoring any cached copy.

        Raises:
            NetworkError: If the primary and the fallback attempt both fail.
        """
        self._report(3, "Downloading data...")
        query = build_query(bbox)
        endpoint = self._rng.choice(self.primary_endpoints)
        log.info("Downloading %s from %s with method %s", bbox, endpoint, self.method)
        try:
            return self.transport(endpoint, query)
        except FetchError as exc:
            if not self.fallback_endpoints:
                raise NetworkError(f"Download failed for {bbox}: {exc}") from exc
            log.warning("Request to %s failed (%s); switching to fallback endpoint", endpoint, exc)

        fallback = self._rng.choice(self.fallback_endpoints)
        try:
            return self.transport(fallback, query)
        except FetchError as exc:
            raise NetworkError(
                f"Download failed for {bbox} (primary and fallback): {exc}"
            ) from exc

    def _report(self, percentage: float, message: str) -> None:
        if self._progress is not None:
            self._progress(percentage, message)
