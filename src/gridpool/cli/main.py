"""gridpool CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from gridpool.cli.cache import cache_app
from gridpool.cli.download import download_cmd, process_cmd
from gridpool.cli.plan import plan_cmd
from gridpool.cli.status import status_cmd
from gridpool.cli.worker import worker_info_cmd


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("gridpool")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"gridpool {ver}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


app = typer.Typer(
    name="gridpool",
    help=(
        "gridpool: split map regions into chunks and fetch their geodata.\n\n"
        "  gridpool plan       Partition a region and seed a coordinator.\n"
        "  gridpool download   Fetch a region into the cache.\n"
        "  gridpool process    Load a region from the cache."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """gridpool: split map regions into chunks and fetch their geodata."""
    _configure_logging(verbose)


app.command("plan")(plan_cmd)
app.command("download")(download_cmd)
app.command("process")(process_cmd)
app.command("status")(status_cmd)
app.command("worker-info")(worker_info_cmd)
app.add_typer(cache_app, name="cache")


@app.command("version")
def version_cmd() -> None:
    """Show the installed gridpool version."""
    try:
        ver = importlib.metadata.version("gridpool")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"gridpool {ver}")


if __name__ == "__main__":
    app()
