"""Tests for the gridpool config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from gridpool.config import (
    DEFAULT_MAX_RAM_GB,
    ConfigError,
    GridpoolConfig,
    PerformanceCfg,
    load_config,
)
from gridpool.platform_info import PlatformInfo
from gridpool.retrieve.overpass import FALLBACK_ENDPOINTS, PRIMARY_ENDPOINTS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


def _load(tmp_path: Path, global_cfg: Path | None = None) -> GridpoolConfig:
    return load_config(
        project_dir=tmp_path,
        global_config_path=global_cfg or tmp_path / "nonexistent" / "config.yaml",
    )


def _host(memory_gb: float = 32.0, cpus: int = 8) -> PlatformInfo:
    return PlatformInfo("linux", "x86_64", cpus, cpus // 2, memory_gb)


# ---------------------------------------------------------------------------
# Defaults: no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    cfg = _load(tmp_path)

    assert cfg.chunking.chunk_size_degrees == 0.01
    assert cfg.chunking.overlap_degrees == 0.001
    assert cfg.settings.scale == 1.0
    assert cfg.settings.terrain is False
    assert cfg.cache.enabled is True
    assert cfg.cache.dir is None
    assert cfg.network.download_method == "requests"
    assert cfg.network.timeout_seconds == 360.0
    assert cfg.network.endpoints == list(PRIMARY_ENDPOINTS)
    assert cfg.network.fallback_endpoints == list(FALLBACK_ENDPOINTS)
    assert cfg.performance.max_ram_gb is None
    assert cfg.coordinator.db == "gridpool.db"
    assert cfg.coordinator.stall_timeout_seconds == 3600.0


def test_default_cache_dir_resolves_under_xdg(tmp_path: Path) -> None:
    # conftest points XDG_CACHE_HOME into tmp_path
    assert _load(tmp_path).cache.resolved_dir() == tmp_path / "xdg-cache" / "gridpool"


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "home" / "config.yaml"
    _write_yaml(global_cfg, {"network": {"download_method": "curl"}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.network.download_method == "curl"
    assert cfg.network.timeout_seconds == 360.0


def test_global_empty_file(tmp_path: Path) -> None:
    global_cfg = tmp_path / "home" / "config.yaml"
    global_cfg.parent.mkdir()
    global_cfg.write_text("", encoding="utf-8")
    assert _load(tmp_path, global_cfg).network.download_method == "requests"


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "home" / "config.yaml"
    _write_yaml(global_cfg, {"chunking": {"chunk_size_degrees": 0.02, "overlap_degrees": 0.002}})
    _write_yaml(tmp_path / "gridpool.yaml", {"chunking": {"chunk_size_degrees": 0.05}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.chunking.chunk_size_degrees == 0.05
    # deep merge keeps the global value for keys the project file omits
    assert cfg.chunking.overlap_degrees == 0.002


def test_all_sections(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "gridpool.yaml",
        {
            "settings": {"scale": 2.0, "terrain": True, "interior": False, "ground_level": -50},
            "cache": {"enabled": False, "dir": "~/gp-cache"},
            "network": {
                "timeout_seconds": 90,
                "endpoints": ["https://mirror/api"],
                "fallback_endpoints": [],
            },
            "performance": {"max_ram_gb": 4, "threads": 2},
            "coordinator": {"db": "state.db", "coordinator_id": "main", "stall_timeout_seconds": 60},
        },
    )
    cfg = _load(tmp_path)

    assert cfg.settings.terrain is True
    assert cfg.settings.interior is False
    assert cfg.settings.roof is True
    assert cfg.settings.ground_level == -50
    assert cfg.cache.enabled is False
    assert cfg.cache.resolved_dir() == Path("~/gp-cache").expanduser()
    assert cfg.network.timeout_seconds == 90.0
    assert cfg.network.endpoints == ["https://mirror/api"]
    assert cfg.network.fallback_endpoints == []
    assert cfg.performance.max_ram_gb == 4.0
    assert cfg.performance.threads == 2
    assert cfg.coordinator.coordinator_id == "main"
    assert cfg.coordinator.stall_timeout_seconds == 60.0


def test_empty_section_keeps_defaults(tmp_path: Path) -> None:
    (tmp_path / "gridpool.yaml").write_text("network:\n", encoding="utf-8")
    assert _load(tmp_path).network.download_method == "requests"


def test_download_method_is_case_insensitive(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "gridpool.yaml", {"network": {"download_method": "WGET"}})
    assert _load(tmp_path).network.download_method == "wget"


# ---------------------------------------------------------------------------
# Invalid values
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data,fragment",
    [
        ({"chunking": {"chunk_size_degrees": 0}}, "chunk_size_degrees"),
        ({"chunking": {"overlap_degrees": -0.1}}, "overlap_degrees"),
        ({"chunking": {"chunk_size_degrees": "big"}}, "must be a number"),
        ({"settings": {"terrain": "yes"}}, "true or false"),
        ({"settings": {"ground_level": 1.5}}, "integer"),
        ({"settings": {"scale": 0}}, "settings.scale"),
        ({"network": {"download_method": "ftp"}}, "not supported"),
        ({"network": {"timeout_seconds": -1}}, "timeout_seconds"),
        ({"network": {"endpoints": []}}, "at least one URL"),
        ({"network": {"endpoints": "https://one"}}, "list of URLs"),
        ({"performance": {"threads": 0}}, "performance.threads"),
        ({"performance": {"max_ram_gb": True}}, "must be a number"),
        ({"cache": ["not", "a", "mapping"]}, "must be a mapping"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, data: dict, fragment: str) -> None:
    _write_yaml(tmp_path / "gridpool.yaml", data)
    with pytest.raises(ConfigError, match=fragment):
        _load(tmp_path)


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    (tmp_path / "gridpool.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        _load(tmp_path)


def test_unparseable_yaml(tmp_path: Path) -> None:
    (tmp_path / "gridpool.yaml").write_text("network: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Could not parse"):
        _load(tmp_path)


def test_config_does_not_execute_yaml_load(tmp_path: Path) -> None:
    """Python object tags are rejected by safe_load, never executed."""
    global_cfg = tmp_path / "home" / "config.yaml"
    global_cfg.parent.mkdir()
    global_cfg.write_text("!!python/object/apply:os.system ['echo pwned']\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        _load(tmp_path, global_cfg)


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "gridpool.yaml", {"rendering": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = _load(tmp_path)

    assert any("rendering" in str(w.message) for w in caught)
    assert cfg.network.download_method == "requests"


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_overrides_project_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "gridpool.yaml", {"network": {"download_method": "curl"}})
    monkeypatch.setenv("GRIDPOOL_DOWNLOAD_METHOD", "wget")
    monkeypatch.setenv("GRIDPOOL_TIMEOUT", "45")
    monkeypatch.setenv("GRIDPOOL_CACHE_DIR", str(tmp_path / "env-cache"))

    cfg = _load(tmp_path)
    assert cfg.network.download_method == "wget"
    assert cfg.network.timeout_seconds == 45.0
    assert cfg.cache.resolved_dir() == tmp_path / "env-cache"


@pytest.mark.parametrize("value", ["soon", "0", "-5"])
def test_env_timeout_invalid(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("GRIDPOOL_TIMEOUT", value)
    with pytest.raises(ConfigError, match="GRIDPOOL_TIMEOUT"):
        _load(tmp_path)


def test_env_download_method_invalid(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GRIDPOOL_DOWNLOAD_METHOD", "telnet")
    with pytest.raises(ConfigError):
        _load(tmp_path)


# ---------------------------------------------------------------------------
# Performance limits
# ---------------------------------------------------------------------------


def test_effective_defaults_cap_ram() -> None:
    eff = PerformanceCfg().effective(_host(memory_gb=64.0, cpus=12))
    assert eff.ram_gb == DEFAULT_MAX_RAM_GB
    assert eff.threads == 12


def test_effective_small_host_uses_all_ram() -> None:
    assert PerformanceCfg().effective(_host(memory_gb=8.0)).ram_gb == 8.0


def test_effective_overrides_never_exceed_host() -> None:
    eff = PerformanceCfg(max_ram_gb=128.0, threads=64).effective(_host(memory_gb=32.0, cpus=8))
    assert eff.ram_gb == 32.0
    assert eff.threads == 8


def test_effective_overrides_below_host() -> None:
    eff = PerformanceCfg(max_ram_gb=2.0, threads=1).effective(_host())
    assert eff.ram_gb == 2.0
    assert eff.threads == 1


def test_with_performance_overrides_returns_copy() -> None:
    base = GridpoolConfig()
    changed = base.with_performance_overrides(max_ram_gb=3.0, threads=2)
    assert changed.performance.max_ram_gb == 3.0
    assert changed.performance.threads == 2
    assert base.performance.max_ram_gb is None
    assert changed.network is base.network


def test_with_performance_overrides_rejects_non_positive() -> None:
    with pytest.raises(ConfigError):
        GridpoolConfig().with_performance_overrides(threads=0)
