"""gridpool status command.

Shows the coordinator's view: chunk counts by status and the registered
workers. ``--json`` prints the wire-format StatusResponse instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gridpool import protocol
from gridpool.cli.common import console, load_cli_config
from gridpool.cli.errors import err_no_db
from gridpool.coordinator import Coordinator
from gridpool.protocol import StatusResponse


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Coordinator database (default from config)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw status message as JSON."),
    ] = False,
    reclaim: Annotated[
        bool,
        typer.Option(
            "--reclaim-stalled",
            help="Fail chunks held longer than coordinator.stall_timeout_seconds first.",
        ),
    ] = False,
) -> None:
    """Show coordinator progress: chunks by status and worker activity."""
    cfg = load_cli_config()
    db_path = db if db is not None else Path(cfg.coordinator.db)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    coordinator = Coordinator(db_path, coordinator_id=cfg.coordinator.coordinator_id)
    if reclaim:
        reclaimed = coordinator.reclaim_stalled(cfg.coordinator.stall_timeout_seconds)
        if reclaimed and not as_json:
            console.print(f"[yellow]Reclaimed {len(reclaimed)} stalled chunks[/]")

    snapshot = coordinator.status()
    if as_json:
        typer.echo(protocol.encode(snapshot))
        return

    _show_chunks_panel(db_path, snapshot)
    _show_workers_panel(snapshot)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_chunks_panel(db_path: Path, snapshot: StatusResponse) -> None:
    total = snapshot.total_chunks
    done = snapshot.completed + snapshot.failed
    pct = (done / total * 100) if total else 0.0
    lines = [
        f"Database:     {escape(str(db_path))}",
        f"Chunks:       [bold]{total}[/]  ({pct:.0f}% finished)",
        f"Completed:    [green]{snapshot.completed}[/]",
        f"In progress:  [cyan]{snapshot.in_progress}[/]",
        f"Pending:      {snapshot.pending}",
        f"Failed:       [red]{snapshot.failed}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Chunks[/]", expand=False))


def _show_workers_panel(snapshot: StatusResponse) -> None:
    summary = snapshot.workers
    if not summary.workers:
        console.print(
            Panel(
                "[dim]No workers registered.[/]",
                title="[bold]Workers[/]",
                expand=False,
            )
        )
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Worker", style="bold")
    table.add_column("Current chunk")
    table.add_column("Done", justify="right")
    table.add_column("Host", style="dim")
    for worker in summary.workers:
        caps = worker.capabilities
        table.add_row(
            escape(worker.worker_id),
            escape(worker.current_chunk) if worker.current_chunk else "[dim]idle[/]",
            str(worker.chunks_completed),
            f"{escape(caps.os)}, {caps.cpu_cores} cores, {caps.memory_gb} GB",
        )
    console.print(
        Panel(
            table,
            title=f"[bold]Workers[/] [dim]({summary.active} active, {summary.idle} idle)[/]",
            expand=False,
        )
    )
