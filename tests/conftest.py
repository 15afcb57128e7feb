"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from gridpool.cache.asset_cache import AssetCache
from gridpool.db.connection import Database
from gridpool.db.schema import initialize
from gridpool.models import BoundingBox


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.gridpool config and ~/.cache."""
    import gridpool.config as config_module

    for var in ("GRIDPOOL_CACHE_DIR", "GRIDPOOL_DOWNLOAD_METHOD", "GRIDPOOL_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.setattr(config_module, "_GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "gridpool.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def cache(tmp_path):
    return AssetCache(tmp_path / "cache")


@pytest.fixture
def nyc_bbox():
    return BoundingBox(40.0, -74.0, 40.1, -73.9)
