"""gridpool download / process: the two halves of a split fetch-then-process run.

  gridpool download --bbox ...   fetch from the data server into the cache
  gridpool process  --bbox ...   load the cached data without network access
"""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel

from gridpool.cache.asset_cache import AssetCache
from gridpool.cli.common import (
    BBOX_HELP,
    cli_sinks,
    console,
    error_message,
    fail,
    load_cli_config,
    parse_bbox,
)
from gridpool.cli.errors import err_data_file
from gridpool.config import DOWNLOAD_METHODS
from gridpool.errors import ConfigError
from gridpool.workflows import (
    build_retriever,
    download_only,
    load_from_file,
    process_only,
    run_guarded,
)


def download_cmd(
    bbox: Annotated[str, typer.Option("--bbox", help=BBOX_HELP)],
    method: Annotated[
        str | None,
        typer.Option("--method", help="Download method: requests, curl or wget."),
    ] = None,
    save_file: Annotated[
        Path | None,
        typer.Option("--save-file", help="Also write the raw server response to this file."),
    ] = None,
) -> None:
    """Download data for a bounding box into the cache (no processing)."""
    cfg = load_cli_config()
    region = parse_bbox(bbox)
    if method is not None:
        if method.lower() not in DOWNLOAD_METHODS:
            fail(ConfigError(
                f"Unknown download method '{method}'. Use one of: {', '.join(sorted(DOWNLOAD_METHODS))}"
            ))
        cfg.network.download_method = method.lower()

    console.print("[bold green]=== DOWNLOAD ONLY MODE ===[/]")
    sinks = cli_sinks()
    metadata = run_guarded(
        lambda: download_only(
            build_retriever(cfg, sinks, use_cache=True), region, sinks, save_file=save_file
        ),
        sinks,
        describe=lambda exc: error_message(exc, region),
    )

    console.print(
        Panel(
            f"Cached at:  {escape(str(cfg.cache.resolved_dir()))}\n"
            f"Size:       {metadata.data_size:,} bytes\n"
            f"Checksum:   {metadata.checksum}\n"
            f"Method:     {escape(metadata.download_method)}"
            + (f"\nSaved to:   {escape(str(save_file))}" if save_file is not None else ""),
            title="[bold green]Download complete[/]",
            expand=False,
        )
    )
    console.print(f"  Next:  gridpool process --bbox {region}")


def process_cmd(
    bbox: Annotated[str, typer.Option("--bbox", help=BBOX_HELP)],
    data_file: Annotated[
        Path | None,
        typer.Option(
            "--file", help="Read a response saved with download --save-file instead of the cache."
        ),
    ] = None,
) -> None:
    """Load previously downloaded data for a bounding box from the cache."""
    cfg = load_cli_config()
    region = parse_bbox(bbox)

    console.print("[bold green]=== PROCESS ONLY MODE ===[/]")
    sinks = cli_sinks()
    if data_file is not None:
        data = run_guarded(
            lambda: load_from_file(data_file, sinks),
            sinks,
            describe=lambda exc: err_data_file(str(data_file), str(exc)),
        )
        console.print(
            Panel(
                f"Elements:    {len(data['elements']):,}\n"
                f"Source:      {escape(str(data_file))}",
                title="[bold green]File loaded[/]",
                expand=False,
            )
        )
        return

    cache = AssetCache(cfg.cache.resolved_dir())
    data, metadata = run_guarded(
        lambda: (process_only(cache, region, sinks), cache.get_metadata(region)),
        sinks,
        describe=lambda exc: error_message(exc, region),
    )

    downloaded = datetime.datetime.fromtimestamp(metadata.timestamp).isoformat(timespec="seconds")
    console.print(
        Panel(
            f"Elements:    {len(data['elements']):,}\n"
            f"Downloaded:  {downloaded}\n"
            f"Size:        {metadata.data_size:,} bytes",
            title="[bold green]Cache loaded[/]",
            expand=False,
        )
    )
