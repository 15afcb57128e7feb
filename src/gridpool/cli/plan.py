"""gridpool plan: partition a region into chunks and optionally seed a coordinator."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from gridpool.chunking import ChunkConfig
from gridpool.cli.common import BBOX_HELP, console, fail, load_cli_config, parse_bbox
from gridpool.coordinator import Coordinator
from gridpool.errors import GridpoolError
from gridpool.progress import null_sinks
from gridpool.workflows import plan_region

_MAX_ROWS = 50


def plan_cmd(
    bbox: Annotated[str, typer.Option("--bbox", help=BBOX_HELP)],
    chunk_size: Annotated[
        float | None,
        typer.Option("--chunk-size", help="Chunk edge length in degrees (default from config)."),
    ] = None,
    overlap: Annotated[
        float | None,
        typer.Option("--overlap", help="Overlap in degrees added toward the max edge."),
    ] = None,
    terrain: Annotated[
        bool | None,
        typer.Option("--terrain/--no-terrain", help="Generate terrain (slower)."),
    ] = None,
    interior: Annotated[
        bool | None,
        typer.Option("--interior/--no-interior", help="Generate building interiors."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Seed this coordinator database with the plan."),
    ] = None,
) -> None:
    """Split a region into work units and estimate processing time."""
    cfg = load_cli_config()
    region = parse_bbox(bbox)

    settings = cfg.settings
    if terrain is not None:
        settings = dataclasses.replace(settings, terrain=terrain)
    if interior is not None:
        settings = dataclasses.replace(settings, interior=interior)

    try:
        config = ChunkConfig(
            chunk_size if chunk_size is not None else cfg.chunking.chunk_size_degrees,
            overlap if overlap is not None else cfg.chunking.overlap_degrees,
        )
        units, stats = plan_region(region, config, settings, null_sinks())
    except GridpoolError as exc:
        fail(exc, region)

    table = Table(title=f"Plan for {region}", show_header=True, header_style="bold")
    table.add_column("Chunk", style="bold")
    table.add_column("Min lat, lng")
    table.add_column("Max lat, lng")
    for unit in units[:_MAX_ROWS]:
        b = unit.bbox
        table.add_row(
            unit.chunk_id,
            f"{b.min_lat:.6f}, {b.min_lng:.6f}",
            f"{b.max_lat:.6f}, {b.max_lng:.6f}",
        )
    console.print(table)
    if len(units) > _MAX_ROWS:
        console.print(f"  [dim]... {len(units) - _MAX_ROWS} more chunks[/]")

    console.print(
        f"\n  Chunks: [bold]{stats.total_chunks}[/]  |  "
        f"Estimated total: [bold]{_fmt_duration(stats.estimated_total_time)}[/]  |  "
        f"Per chunk: [bold]{_fmt_duration(stats.estimated_time_per_chunk)}[/]"
    )

    if db is not None:
        coordinator = Coordinator(db, coordinator_id=cfg.coordinator.coordinator_id)
        added = coordinator.load_plan(units)
        console.print(f"[green]✓[/] Seeded {added} new work units into {escape(str(db))}")


def _fmt_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"
