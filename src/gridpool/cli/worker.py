"""gridpool worker-info: what this host would report when registering."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel

from gridpool.cli.common import console, fail, load_cli_config
from gridpool.errors import ConfigError
from gridpool.platform_info import PlatformInfo


def worker_info_cmd(
    threads: Annotated[
        int | None,
        typer.Option("--threads", help="Thread override (capped at the logical CPU count)."),
    ] = None,
    max_ram_gb: Annotated[
        float | None,
        typer.Option("--max-ram-gb", help="RAM override in GB (capped at system RAM)."),
    ] = None,
) -> None:
    """Show detected capabilities and the effective performance limits."""
    cfg = load_cli_config()
    try:
        cfg = cfg.with_performance_overrides(max_ram_gb=max_ram_gb, threads=threads)
    except ConfigError as exc:
        fail(exc)

    platform = PlatformInfo.detect()
    effective = cfg.performance.effective(platform)
    caps = platform.capabilities()
    lines = [
        f"OS:             {caps.os} ({platform.architecture})",
        f"CPUs:           {platform.logical_cpus} logical, {platform.physical_cpus} physical",
        f"Memory:         {platform.total_memory_gb:.1f} GB",
        "",
        f"Threads:        [bold]{effective.threads}[/]",
        f"RAM limit:      [bold]{effective.ram_gb:.1f} GB[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Worker[/]", expand=False))
