"""Shared CLI plumbing: config loading, --bbox parsing, error reporting."""

from __future__ import annotations

from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from gridpool.cli.errors import (
    err_config,
    err_corrupt_cache,
    err_empty_response,
    err_invalid_bbox,
    err_network,
    err_no_cache,
)
from gridpool.config import GridpoolConfig, load_config
from gridpool.errors import (
    ConfigError,
    EmptyResponseError,
    GridpoolError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    SerializationError,
)
from gridpool.models import BoundingBox
from gridpool.progress import Sinks, console_sinks

console = Console()

BBOX_HELP = "Bounding box as MIN_LAT,MIN_LNG,MAX_LAT,MAX_LNG."


def load_cli_config() -> GridpoolConfig:
    """Load config from the current directory; exit 1 with a message if invalid."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def parse_bbox(text: str) -> BoundingBox:
    try:
        return BoundingBox.parse(text)
    except ConfigError as exc:
        console.print(err_invalid_bbox(text, str(exc)))
        raise typer.Exit(1) from exc


def error_message(exc: GridpoolError, bbox: BoundingBox | None = None) -> str:
    """Return the actionable rich message for *exc*."""
    where = str(bbox) if bbox is not None else "this bounding box"
    if isinstance(exc, (IntegrityError, SerializationError)):
        message = err_corrupt_cache(where, str(exc))
    elif isinstance(exc, EmptyResponseError):
        message = err_empty_response(str(exc))
    elif isinstance(exc, NetworkError):
        message = err_network(str(exc))
    elif isinstance(exc, NotFoundError):
        message = err_no_cache(where)
    elif isinstance(exc, ConfigError):
        message = err_config(str(exc))
    else:
        message = f"[red]Error:[/] {escape(str(exc))}"
    return message


def fail(exc: GridpoolError, bbox: BoundingBox | None = None) -> NoReturn:
    """Print the actionable message for *exc* and exit 1."""
    console.print(error_message(exc, bbox))
    raise typer.Exit(1) from exc


def cli_sinks() -> Sinks:
    """Console progress; the error sink prints already-formatted rich markup."""
    return Sinks(progress=console_sinks(console).progress, error=console.print)
