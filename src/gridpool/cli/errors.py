"""gridpool rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from gridpool.cli.errors import err_no_cache
    console.print(err_no_cache(bbox))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_invalid_bbox(text: str, reason: str) -> str:
    """--bbox could not be parsed or is not a valid box."""
    return (
        f"[red]Error:[/] Invalid bounding box '{escape(text)}': {escape(reason)}\n"
        "  Use:  --bbox MIN_LAT,MIN_LNG,MAX_LAT,MAX_LNG\n"
        "  Example:  --bbox 40.0,-74.0,40.1,-73.9"
    )


def err_config(reason: str) -> str:
    """gridpool.yaml, ~/.gridpool/config.yaml or a GRIDPOOL_* variable is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {escape(reason)}\n"
        "  Fix the value in gridpool.yaml or ~/.gridpool/config.yaml."
    )


def err_no_cache(bbox: str) -> str:
    """Process-only run without a cache entry for the box."""
    return (
        f"[red]Error:[/] No cached data found for bounding box {escape(bbox)}.\n"
        f"  Run:  gridpool download --bbox {escape(bbox)}"
    )


def err_corrupt_cache(bbox: str, reason: str) -> str:
    """Cached payload failed its integrity check or its metadata is unreadable."""
    return (
        f"[red]Error:[/] Cached data for {escape(bbox)} is corrupt: {escape(reason)}\n"
        f"  Run:  gridpool cache clear --bbox {escape(bbox)} --yes\n"
        f"  then: gridpool download --bbox {escape(bbox)}"
    )


def err_network(reason: str) -> str:
    """Primary and fallback downloads both failed."""
    return (
        f"[red]Error:[/] Download failed: {escape(reason)}\n"
        "  Check your connection and retry, or try another method:  --method curl"
    )


def err_empty_response(reason: str) -> str:
    """The data server answered without any elements."""
    return (
        f"[red]Error:[/] {escape(reason)}\n"
        "  Retry later, or split the area:  gridpool plan --bbox ... --chunk-size 0.005"
    )


def err_no_db(db_path: str) -> str:
    """No coordinator database at the given path."""
    return (
        f"[red]Error:[/] No coordinator database found at '{escape(db_path)}'.\n"
        f"  Run:  gridpool plan --bbox MIN_LAT,MIN_LNG,MAX_LAT,MAX_LNG --db {escape(db_path)}"
    )


def err_clear_target() -> str:
    """cache clear without a target."""
    return (
        "[red]Error:[/] Nothing to clear.\n"
        "  Use:  gridpool cache clear --bbox MIN_LAT,MIN_LNG,MAX_LAT,MAX_LNG\n"
        "  or:   gridpool cache clear --all"
    )


def err_data_file(path: str, reason: str) -> str:
    """process --file could not read a saved response."""
    return (
        f"[red]Error:[/] Could not load '{escape(path)}': {escape(reason)}\n"
        "  Save a fresh response:  gridpool download --bbox ... --save-file PATH"
    )
