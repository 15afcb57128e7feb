"""Tests for the Coordinator protocol handler."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from gridpool import protocol
from gridpool.chunking import split
from gridpool.coordinator import Coordinator
from gridpool.db.repository import Repository
from gridpool.errors import NotFoundError, SerializationError, TransitionError
from gridpool.models import BoundingBox, WorkerCapabilities, WorkResult
from gridpool.protocol import (
    RegisterWorkerRequest,
    StatusRequest,
    SubmitResultRequest,
    WorkRequest,
)
from gridpool.status import WorkStatus

CAPS = WorkerCapabilities("linux", 8, 16)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(tmp_path, clock, nyc_bbox):
    coord = Coordinator(tmp_path / "coord.db", coordinator_id="coord-test", clock=clock)
    coord.load_plan(split(nyc_bbox, 0.05, 0.001))
    return coord


def _register(coord: Coordinator, worker_id: str) -> None:
    coord.register_worker(RegisterWorkerRequest(worker_id, CAPS))


def _done(chunk_id: str) -> WorkResult:
    return WorkResult.completed(chunk_id, f"out/{chunk_id}", 1.0)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_returns_coordinator_id(coordinator):
    resp = coordinator.register_worker(RegisterWorkerRequest("w1", CAPS))
    assert resp.status == protocol.STATUS_REGISTERED
    assert resp.coordinator_id == "coord-test"


def test_register_is_idempotent(coordinator):
    _register(coordinator, "w1")
    _register(coordinator, "w1")
    assert len(coordinator.status().workers.workers) == 1


def test_random_coordinator_id_when_not_given(tmp_path):
    coord = Coordinator(tmp_path / "x.db")
    assert coord.coordinator_id.startswith("coordinator-")


# ---------------------------------------------------------------------------
# Work requests
# ---------------------------------------------------------------------------


def test_request_work_requires_registration(coordinator):
    with pytest.raises(NotFoundError, match="not registered"):
        coordinator.request_work(WorkRequest("stranger"))


def test_request_work_assigns_in_plan_order(coordinator):
    _register(coordinator, "w1")
    _register(coordinator, "w2")
    a = coordinator.request_work(WorkRequest("w1")).work_unit
    b = coordinator.request_work(WorkRequest("w2")).work_unit
    assert a.chunk_id == "chunk_0_0"
    assert b.chunk_id == "chunk_0_1"
    status = coordinator.status()
    assert status.chunk_status["chunk_0_0"] is WorkStatus.ASSIGNED
    assert status.in_progress == 2
    assert status.pending == 2


def test_worker_holding_a_unit_gets_it_again(coordinator):
    _register(coordinator, "w1")
    first = coordinator.request_work(WorkRequest("w1")).work_unit
    again = coordinator.request_work(WorkRequest("w1")).work_unit
    assert again == first
    assert coordinator.status().pending == 3


def test_no_work_when_plan_exhausted(coordinator):
    for i in range(4):
        _register(coordinator, f"w{i}")
        assert coordinator.request_work(WorkRequest(f"w{i}")).work_unit is not None
    _register(coordinator, "late")
    resp = coordinator.request_work(WorkRequest("late"))
    assert resp.work_unit is None
    assert resp.osm_data_url is None


def test_data_url_resolver(tmp_path, nyc_bbox):
    coord = Coordinator(
        tmp_path / "c.db", data_url_for=lambda unit: f"http://coord/data/{unit.chunk_id}"
    )
    coord.load_plan(split(nyc_bbox, 0.05, 0.001))
    _register(coord, "w1")
    resp = coord.request_work(WorkRequest("w1"))
    assert resp.osm_data_url == "http://coord/data/chunk_0_0"


def test_load_plan_is_idempotent(coordinator, nyc_bbox):
    assert coordinator.load_plan(split(nyc_bbox, 0.05, 0.001)) == 0
    assert coordinator.status().total_chunks == 4


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def test_submit_completed_result_and_piggyback(coordinator):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    resp = coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))

    assert resp.status == protocol.STATUS_ACCEPTED
    assert resp.next_work.chunk_id == "chunk_0_1"
    status = coordinator.status()
    assert status.completed == 1
    assert status.chunk_status["chunk_0_0"] is WorkStatus.COMPLETED
    assert status.chunk_status["chunk_0_1"] is WorkStatus.ASSIGNED
    worker = status.workers.workers[0]
    assert worker.chunks_completed == 1
    assert worker.current_chunk == "chunk_0_1"
    assert coordinator.result_for("chunk_0_0").result_location == "out/chunk_0_0"


def test_submit_failed_result(coordinator):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    coordinator.start_work("w1", unit.chunk_id)
    coordinator.submit_result(
        SubmitResultRequest("w1", WorkResult.failed(unit.chunk_id, "out of memory", 2.0))
    )
    status = coordinator.status()
    assert status.failed == 1
    assert status.workers.workers[0].chunks_completed == 0


def test_last_result_has_no_next_work(coordinator):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    while unit is not None:
        unit = coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id))).next_work
    status = coordinator.status()
    assert status.completed == status.total_chunks == 4
    assert status.workers.idle == 1


def test_submit_for_unheld_chunk_is_rejected(coordinator):
    _register(coordinator, "w1")
    with pytest.raises(TransitionError, match="Pending"):
        coordinator.submit_result(SubmitResultRequest("w1", _done("chunk_0_0")))
    assert coordinator.status().chunk_status["chunk_0_0"] is WorkStatus.PENDING


def test_submit_by_other_worker_is_rejected(coordinator):
    _register(coordinator, "w1")
    _register(coordinator, "w2")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    with pytest.raises(TransitionError, match="held by 'w1'"):
        coordinator.submit_result(SubmitResultRequest("w2", _done(unit.chunk_id)))


def test_resubmission_is_rejected(coordinator):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))
    with pytest.raises(TransitionError, match="Completed"):
        coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))


def test_submit_unknown_chunk(coordinator):
    _register(coordinator, "w1")
    with pytest.raises(NotFoundError):
        coordinator.submit_result(SubmitResultRequest("w1", _done("chunk_9_9")))


def test_start_work_twice_is_illegal(coordinator):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    coordinator.start_work("w1", unit.chunk_id)
    assert coordinator.status().chunk_status[unit.chunk_id] is WorkStatus.IN_PROGRESS
    with pytest.raises(TransitionError):
        coordinator.start_work("w1", unit.chunk_id)


def test_failed_result_write_applies_nothing(coordinator, monkeypatch):
    _register(coordinator, "w1")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit

    def disk_full(self, worker_id, result):
        raise sqlite3.OperationalError("database or disk is full")

    with monkeypatch.context() as m:
        m.setattr(Repository, "add_result", disk_full)
        with pytest.raises(sqlite3.OperationalError):
            coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))

    status = coordinator.status()
    assert status.chunk_status[unit.chunk_id] is WorkStatus.ASSIGNED
    assert status.pending == 3
    worker = status.workers.workers[0]
    assert worker.current_chunk == unit.chunk_id
    assert worker.chunks_completed == 0
    with pytest.raises(NotFoundError):
        coordinator.result_for(unit.chunk_id)

    resp = coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))
    assert resp.next_work.chunk_id == "chunk_0_1"
    assert coordinator.result_for(unit.chunk_id).status is WorkStatus.COMPLETED


def test_result_for_unknown(coordinator):
    with pytest.raises(NotFoundError):
        coordinator.result_for("chunk_0_0")


# ---------------------------------------------------------------------------
# Status and stalls
# ---------------------------------------------------------------------------


def test_status_counts_sum_to_total(coordinator):
    _register(coordinator, "w1")
    _register(coordinator, "w2")
    unit = coordinator.request_work(WorkRequest("w1")).work_unit
    coordinator.request_work(WorkRequest("w2"))
    coordinator.submit_result(SubmitResultRequest("w1", _done(unit.chunk_id)))
    s = coordinator.status(StatusRequest())
    assert s.completed + s.in_progress + s.pending + s.failed == s.total_chunks
    assert s.workers.active + s.workers.idle == 2


def test_reclaim_stalled_fails_old_chunks(coordinator, clock):
    _register(coordinator, "w1")
    _register(coordinator, "w2")
    stuck = coordinator.request_work(WorkRequest("w1")).work_unit
    clock.now += 500
    coordinator.request_work(WorkRequest("w2"))
    clock.now += 100

    reclaimed = coordinator.reclaim_stalled(timeout_seconds=300)

    assert reclaimed == [stuck.chunk_id]
    status = coordinator.status()
    assert status.chunk_status[stuck.chunk_id] is WorkStatus.FAILED
    assert "stalled" in coordinator.result_for(stuck.chunk_id).error
    w1 = next(w for w in status.workers.workers if w.worker_id == "w1")
    assert w1.current_chunk is None


def test_reclaim_is_all_or_nothing(coordinator, clock, monkeypatch):
    _register(coordinator, "w1")
    stuck = coordinator.request_work(WorkRequest("w1")).work_unit
    clock.now += 600

    def locked(self, worker_id, now, completed=False):
        raise sqlite3.OperationalError("database is locked")

    with monkeypatch.context() as m:
        m.setattr(Repository, "release_worker", locked)
        with pytest.raises(sqlite3.OperationalError):
            coordinator.reclaim_stalled(timeout_seconds=300)

    status = coordinator.status()
    assert status.chunk_status[stuck.chunk_id] is WorkStatus.ASSIGNED
    assert status.workers.workers[0].current_chunk == stuck.chunk_id
    with pytest.raises(NotFoundError):
        coordinator.result_for(stuck.chunk_id)
    assert coordinator.reclaim_stalled(timeout_seconds=300) == [stuck.chunk_id]


def test_reclaim_nothing_when_fresh(coordinator):
    _register(coordinator, "w1")
    coordinator.request_work(WorkRequest("w1"))
    assert coordinator.reclaim_stalled(timeout_seconds=60) == []


# ---------------------------------------------------------------------------
# JSON dispatch
# ---------------------------------------------------------------------------


def test_handle_dispatches_wire_dicts(coordinator):
    reg = coordinator.handle(
        "register_worker", {"worker_id": "w1", "capabilities": CAPS.to_dict()}
    )
    assert reg["status"] == "registered"
    work = coordinator.handle("request_work", {"worker_id": "w1"})
    assert work["work_unit"]["chunk_id"] == "chunk_0_0"
    status = coordinator.handle("status", {})
    assert status["chunk_status"]["chunk_0_0"] == "Assigned"


def test_handle_unknown_operation(coordinator):
    with pytest.raises(SerializationError, match="Unknown coordinator operation"):
        coordinator.handle("shutdown", {})


def test_handle_malformed_payload(coordinator):
    with pytest.raises(SerializationError):
        coordinator.handle("request_work", {"worker": "w1"})


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_requests_never_share_a_chunk(tmp_path):
    region = BoundingBox(0.0, 0.0, 0.5, 0.5)
    coord = Coordinator(tmp_path / "race.db")
    coord.load_plan(split(region, 0.1, 0.0))  # 25 units
    workers = [f"w{i}" for i in range(8)]
    for w in workers:
        _register(coord, w)

    claimed: dict[str, list[str]] = {w: [] for w in workers}
    errors: list[BaseException] = []
    barrier = threading.Barrier(len(workers))

    def run(worker_id: str) -> None:
        try:
            barrier.wait()
            unit = coord.request_work(WorkRequest(worker_id)).work_unit
            while unit is not None:
                claimed[worker_id].append(unit.chunk_id)
                resp = coord.submit_result(SubmitResultRequest(worker_id, _done(unit.chunk_id)))
                unit = resp.next_work
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(w,)) for w in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    all_claimed = [c for chunks in claimed.values() for c in chunks]
    assert len(all_claimed) == len(set(all_claimed)) == 25
    status = coord.status()
    assert status.completed == 25
    assert status.pending == 0


def test_concurrent_requests_from_one_worker_claim_once(tmp_path):
    coord = Coordinator(tmp_path / "same.db")
    coord.load_plan(split(BoundingBox(0.0, 0.0, 0.5, 0.5), 0.1, 0.0))
    _register(coord, "w1")

    received: list[str] = []
    errors: list[BaseException] = []
    barrier = threading.Barrier(4)

    def run() -> None:
        try:
            barrier.wait()
            received.append(coord.request_work(WorkRequest("w1")).work_unit.chunk_id)
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert received == ["chunk_0_0"] * 4
    status = coord.status()
    assert status.in_progress == 1
    assert status.pending == 24
    assert status.workers.workers[0].current_chunk == "chunk_0_0"
