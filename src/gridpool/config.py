"""gridpool configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (GRIDPOOL_CACHE_DIR, GRIDPOOL_DOWNLOAD_METHOD, GRIDPOOL_TIMEOUT)
  3. Per-project gridpool.yaml  (current directory by default)
  4. Global ~/.gridpool/config.yaml
  5. Hardcoded defaults

The loaded ``GridpoolConfig`` is a plain value handed to components; nothing
reads configuration from module state. All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import dataclasses
import math
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gridpool.cache.asset_cache import default_cache_dir
from gridpool.chunking import ChunkConfig
from gridpool.errors import ConfigError
from gridpool.models import WorkSettings
from gridpool.platform_info import PlatformInfo
from gridpool.retrieve.overpass import FALLBACK_ENDPOINTS, PRIMARY_ENDPOINTS
from gridpool.retrieve.transports import DEFAULT_TIMEOUT

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".gridpool"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "gridpool.yaml"

DEFAULT_MAX_RAM_GB = 16.0

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["chunking", "settings", "cache", "network", "performance", "coordinator"]
)

DOWNLOAD_METHODS: frozenset[str] = frozenset(["requests", "native", "curl", "wget"])


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Grid geometry (gridpool.yaml: chunking:)."""

    chunk_size_degrees: float = 0.01
    overlap_degrees: float = 0.001

    def to_chunk_config(self) -> ChunkConfig:
        return ChunkConfig(self.chunk_size_degrees, self.overlap_degrees)


@dataclass
class CacheCfg:
    """Asset cache (gridpool.yaml: cache:).

    Attributes:
        enabled: When False, every fetch goes to the network.
        dir: Cache root; None resolves via ``default_cache_dir()``.
    """

    enabled: bool = True
    dir: str | None = None

    def resolved_dir(self) -> Path:
        return Path(self.dir).expanduser() if self.dir else default_cache_dir()


@dataclass
class NetworkCfg:
    """Data server access (gridpool.yaml: network:)."""

    timeout_seconds: float = float(DEFAULT_TIMEOUT)
    download_method: str = "requests"
    endpoints: list[str] = field(default_factory=lambda: list(PRIMARY_ENDPOINTS))
    fallback_endpoints: list[str] = field(default_factory=lambda: list(FALLBACK_ENDPOINTS))


@dataclass(frozen=True)
class EffectivePerformance:
    ram_gb: float
    threads: int


@dataclass
class PerformanceCfg:
    """Resource limits (gridpool.yaml: performance:).

    Overrides never exceed what the host actually has.
    """

    max_ram_gb: float | None = None
    threads: int | None = None

    def effective(self, platform: PlatformInfo) -> EffectivePerformance:
        ram = min(platform.total_memory_gb, DEFAULT_MAX_RAM_GB)
        threads = platform.logical_cpus
        if self.max_ram_gb is not None:
            ram = min(self.max_ram_gb, platform.total_memory_gb)
        if self.threads is not None:
            threads = min(self.threads, platform.logical_cpus)
        return EffectivePerformance(ram_gb=ram, threads=threads)


@dataclass
class CoordinatorCfg:
    """Coordinator state store (gridpool.yaml: coordinator:)."""

    db: str = "gridpool.db"
    coordinator_id: str | None = None
    stall_timeout_seconds: float = 3600.0


@dataclass
class GridpoolConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    settings: WorkSettings = field(default_factory=WorkSettings)
    cache: CacheCfg = field(default_factory=CacheCfg)
    network: NetworkCfg = field(default_factory=NetworkCfg)
    performance: PerformanceCfg = field(default_factory=PerformanceCfg)
    coordinator: CoordinatorCfg = field(default_factory=CoordinatorCfg)

    def with_performance_overrides(
        self, *, max_ram_gb: float | None = None, threads: int | None = None
    ) -> GridpoolConfig:
        """Return a copy with the given performance overrides applied.

        Raises:
            ConfigError: If an override is not positive.
        """
        perf = self.performance
        if max_ram_gb is not None:
            perf = dataclasses.replace(perf, max_ram_gb=_positive("performance.max_ram_gb", max_ram_gb))
        if threads is not None:
            perf = dataclasses.replace(perf, threads=int(_positive("performance.threads", threads)))
        return dataclasses.replace(self, performance=perf)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _positive(name: str, value: float) -> float:
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"{name} must be > 0, got {value!r}")
    return value


def _number(section: dict[str, Any], name: str, key: str, default: float) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"{name}.{key} must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}.{key} must be a number, got {raw!r}") from exc


def _integer(section: dict[str, Any], name: str, key: str, default: int) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{name}.{key} must be an integer, got {raw!r}")
    return raw


def _flag(section: dict[str, Any], name: str, key: str, default: bool) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ConfigError(f"{name}.{key} must be true or false, got {raw!r}")
    return raw


def _string_list(section: dict[str, Any], name: str, key: str, default: list[str]) -> list[str]:
    raw = section.get(key, default)
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        raise ConfigError(f"{name}.{key} must be a list of URLs")
    return list(raw)


def _section(data: dict[str, Any], name: str) -> dict[str, Any] | None:
    if name not in data:
        return None
    raw = data[name]
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(raw).__name__}")
    return raw


def _check_download_method(method: str) -> str:
    if method.lower() not in DOWNLOAD_METHODS:
        raise ConfigError(
            f"network.download_method '{method}' is not supported.\n"
            f"  Use one of: {', '.join(sorted(DOWNLOAD_METHODS))}"
        )
    return method.lower()


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> GridpoolConfig:
    """Build a *GridpoolConfig* from a merged raw YAML dict."""
    cfg = GridpoolConfig()

    if (c := _section(data, "chunking")) is not None:
        cfg.chunking = ChunkingCfg(
            chunk_size_degrees=_number(c, "chunking", "chunk_size_degrees", cfg.chunking.chunk_size_degrees),
            overlap_degrees=_number(c, "chunking", "overlap_degrees", cfg.chunking.overlap_degrees),
        )
        # validates geometry
        cfg.chunking.to_chunk_config()

    if (s := _section(data, "settings")) is not None:
        cfg.settings = WorkSettings(
            scale=_number(s, "settings", "scale", cfg.settings.scale),
            terrain=_flag(s, "settings", "terrain", cfg.settings.terrain),
            interior=_flag(s, "settings", "interior", cfg.settings.interior),
            roof=_flag(s, "settings", "roof", cfg.settings.roof),
            ground_level=_integer(s, "settings", "ground_level", cfg.settings.ground_level),
        )
        _positive("settings.scale", cfg.settings.scale)

    if (ca := _section(data, "cache")) is not None:
        raw_dir = ca.get("dir", cfg.cache.dir)
        cfg.cache = CacheCfg(
            enabled=_flag(ca, "cache", "enabled", cfg.cache.enabled),
            dir=str(raw_dir) if raw_dir is not None else None,
        )

    if (n := _section(data, "network")) is not None:
        cfg.network = NetworkCfg(
            timeout_seconds=_positive(
                "network.timeout_seconds",
                _number(n, "network", "timeout_seconds", cfg.network.timeout_seconds),
            ),
            download_method=_check_download_method(
                str(n.get("download_method", cfg.network.download_method))
            ),
            endpoints=_string_list(n, "network", "endpoints", cfg.network.endpoints),
            fallback_endpoints=_string_list(
                n, "network", "fallback_endpoints", cfg.network.fallback_endpoints
            ),
        )
        if not cfg.network.endpoints:
            raise ConfigError("network.endpoints must list at least one URL")

    if (p := _section(data, "performance")) is not None:
        ram = p.get("max_ram_gb")
        threads = p.get("threads")
        cfg.performance = PerformanceCfg(
            max_ram_gb=(
                _positive("performance.max_ram_gb", _number(p, "performance", "max_ram_gb", 0.0))
                if ram is not None
                else None
            ),
            threads=(
                int(_positive("performance.threads", _integer(p, "performance", "threads", 0)))
                if threads is not None
                else None
            ),
        )

    if (co := _section(data, "coordinator")) is not None:
        raw_id = co.get("coordinator_id")
        cfg.coordinator = CoordinatorCfg(
            db=str(co.get("db", cfg.coordinator.db)),
            coordinator_id=str(raw_id) if raw_id is not None else None,
            stall_timeout_seconds=_positive(
                "coordinator.stall_timeout_seconds",
                _number(co, "coordinator", "stall_timeout_seconds", cfg.coordinator.stall_timeout_seconds),
            ),
        )

    return cfg


def _apply_env_overrides(cfg: GridpoolConfig) -> GridpoolConfig:
    """Apply GRIDPOOL_* environment variable overrides (layer 2)."""
    if cache_dir := os.environ.get("GRIDPOOL_CACHE_DIR"):
        cfg.cache.dir = cache_dir
    if method := os.environ.get("GRIDPOOL_DOWNLOAD_METHOD"):
        cfg.network.download_method = _check_download_method(method)
    if timeout := os.environ.get("GRIDPOOL_TIMEOUT"):
        try:
            seconds = float(timeout)
        except ValueError as exc:
            raise ConfigError(f"GRIDPOOL_TIMEOUT must be a number of seconds, got {timeout!r}") from exc
        cfg.network.timeout_seconds = _positive("GRIDPOOL_TIMEOUT", seconds)
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse config file '{path}': {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> GridpoolConfig:
    """Load and return a merged *GridpoolConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *gridpool.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *GridpoolConfig* with env var overrides applied.

    Raises:
        ConfigError: If a file cannot be parsed or holds an invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)
