"""Tests for gridpool status."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from gridpool.chunking import split
from gridpool.cli.main import app
from gridpool.coordinator import Coordinator
from gridpool.models import BoundingBox, WorkerCapabilities, WorkResult
from gridpool.protocol import RegisterWorkerRequest, SubmitResultRequest, WorkRequest

runner = CliRunner()

CAPS = WorkerCapabilities("linux", 8, 16)


@pytest.fixture(autouse=True)
def _in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def seeded(tmp_path: Path) -> tuple[Path, Coordinator]:
    db = tmp_path / "gridpool.db"
    coord = Coordinator(db, clock=lambda: 0.0)
    coord.load_plan(split(BoundingBox(40.0, -74.0, 40.1, -73.9), 0.05, 0.001))
    return db, coord


def test_status_no_db() -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1
    assert "No coordinator database" in result.output
    assert "gridpool plan" in result.output


def test_status_fresh_plan(seeded) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "Pending:      4" in result.output
    assert "No workers registered." in result.output


def test_status_with_workers(seeded) -> None:
    db, coord = seeded
    coord.register_worker(RegisterWorkerRequest("alpha", CAPS))
    coord.register_worker(RegisterWorkerRequest("beta", CAPS))
    unit = coord.request_work(WorkRequest("alpha")).work_unit
    coord.submit_result(
        SubmitResultRequest("alpha", WorkResult.completed(unit.chunk_id, "out/a", 1.0))
    )

    result = runner.invoke(app, ["status", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Completed:    1" in result.output
    assert "In progress:  1" in result.output
    assert "alpha" in result.output
    assert "beta" in result.output


def test_status_json(seeded) -> None:
    db, coord = seeded
    coord.register_worker(RegisterWorkerRequest("alpha", CAPS))
    coord.request_work(WorkRequest("alpha"))

    result = runner.invoke(app, ["status", "--json", "--db", str(db)])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["total_chunks"] == 4
    assert data["in_progress"] == 1
    assert data["chunk_status"]["chunk_0_0"] == "Assigned"
    assert data["workers"]["active"] == 1


def test_status_reclaim_stalled(seeded) -> None:
    db, coord = seeded
    coord.register_worker(RegisterWorkerRequest("alpha", CAPS))
    coord.request_work(WorkRequest("alpha"))

    # assigned at t=0; the CLI coordinator uses wall-clock time
    result = runner.invoke(app, ["status", "--reclaim-stalled"])
    assert result.exit_code == 0, result.output
    assert "Reclaimed 1 stalled chunks" in result.output
    assert "Failed:       1" in result.output


def test_status_shows_markup_like_worker_text_verbatim(seeded) -> None:
    db, coord = seeded
    coord.register_worker(
        RegisterWorkerRequest("node[/x]", WorkerCapabilities("[red]linux", 8, 16))
    )
    coord.request_work(WorkRequest("node[/x]"))

    result = runner.invoke(app, ["status", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "node[/x]" in result.output
    assert "[red]linux" in result.output
