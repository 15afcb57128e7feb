"""gridpool cache CLI commands.

Commands:
  gridpool cache list                 show every cached bounding box
  gridpool cache size                 total bytes on disk
  gridpool cache clear --bbox ... | --all
"""

from __future__ import annotations

import datetime
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from gridpool.cache.asset_cache import AssetCache
from gridpool.cli.common import BBOX_HELP, console, load_cli_config, parse_bbox
from gridpool.cli.errors import err_clear_target

cache_app = typer.Typer(
    name="cache",
    help="Inspect and clear the download cache (list, size, clear).",
    add_completion=False,
)


def _open_cache() -> AssetCache:
    return AssetCache(load_cli_config().cache.resolved_dir())


@cache_app.command("list")
def cache_list_cmd() -> None:
    """List cached bounding boxes."""
    cache = _open_cache()
    entries = cache.list()
    if not entries:
        console.print(f"[yellow]Cache is empty:[/] {escape(str(cache.cache_dir))}")
        raise typer.Exit(0)

    table = Table(title="Cached Downloads", show_header=True, header_style="bold")
    table.add_column("Bounding box", style="bold")
    table.add_column("Downloaded")
    table.add_column("Size", justify="right")
    table.add_column("Method", style="dim")
    for meta in entries:
        table.add_row(
            str(meta.bbox),
            datetime.datetime.fromtimestamp(meta.timestamp).isoformat(timespec="seconds"),
            _fmt_bytes(meta.data_size),
            escape(meta.download_method),
        )
    console.print(table)
    console.print(f"\n  {len(entries)} entries in {escape(str(cache.cache_dir))}")


@cache_app.command("size")
def cache_size_cmd() -> None:
    """Show the total size of the cache."""
    cache = _open_cache()
    total = cache.size()
    console.print(f"{_fmt_bytes(total)} ({total:,} bytes) in {escape(str(cache.cache_dir))}")


@cache_app.command("clear")
def cache_clear_cmd(
    bbox: Annotated[
        str | None,
        typer.Option("--bbox", help=BBOX_HELP),
    ] = None,
    clear_all: Annotated[
        bool,
        typer.Option("--all", help="Remove every cache entry."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove one cache entry (--bbox) or all of them (--all)."""
    if bbox is None and not clear_all:
        console.print(err_clear_target())
        raise typer.Exit(1)

    cache = _open_cache()
    if clear_all:
        if not yes:
            typer.confirm(f"Remove all cached data in {cache.cache_dir}?", abort=True)
        cache.clear_all()
        console.print("[green]✓[/] Cache cleared.")
        return

    region = parse_bbox(bbox)
    if not cache.entry_dir(region).exists():
        console.print(f"[yellow]Not cached:[/] {region}")
        raise typer.Exit(0)
    if not yes:
        typer.confirm(f"Remove cached data for {region}?", abort=True)
    cache.clear(region)
    console.print(f"[green]✓[/] Removed cache entry for {region}.")


def _fmt_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    size = n / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
