"""Asset cache for downloaded geodata."""

from gridpool.cache.asset_cache import (
    AssetCache,
    CacheMetadata,
    cache_key,
    checksum,
    default_cache_dir,
)

__all__ = [
    "AssetCache",
    "CacheMetadata",
    "cache_key",
    "checksum",
    "default_cache_dir",
]
