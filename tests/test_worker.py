import threading
import time

import pytest

from config import CFG
from models import SolveStatus
from solver.worker import SolverWorker, WorkerBusyError, _backstop_seconds


def _quick_payload(**overrides):
    payload = {
        "students": ["amy", "bob", "cat", "dan"],
        "numRows": 2,
        "numCols": 2,
        "constraints": [{"type": "preferred_rows", "students": ["amy", "1"]}],
        "seed": 5,
    }
    payload.update(overrides)
    return payload


def _thrash_payload(**overrides):
    pinned = []
    for name in ("x", "y"):
        pinned.append({"type": "preferred_rows", "students": [name, "4"]})
        pinned.append({"type": "preferred_cols", "students": [name, "1"]})
    payload = {
        "students": [f"s{i:02d}" for i in range(14)] + ["x", "y"],
        "numRows": 4,
        "numCols": 4,
        "constraints": pinned,
        "timeLimitSec": 30,
        "seed": 11,
    }
    payload.update(overrides)
    return payload


def test_invalid_isolation_is_rejected():
    with pytest.raises(ValueError):
        SolverWorker(isolation="fork-bomb")


def test_cancel_when_idle_returns_false():
    worker = SolverWorker(isolation="thread")
    assert worker.busy is False
    assert worker.cancel() is False
    assert worker.join(timeout=0) is None


def test_backstop_only_applies_to_grid_mode():
    assert _backstop_seconds({"mode": "groups"}) is None
    assert _backstop_seconds({"timeLimitSec": 0.01}) == pytest.approx(
        CFG.TIME_LIMIT_MIN_SEC + CFG.WORKER_GRACE_SEC
    )
    assert _backstop_seconds({}) == pytest.approx(CFG.TIME_LIMIT_SEC + CFG.WORKER_GRACE_SEC)


def test_thread_worker_delivers_result_to_callback():
    seen = []
    worker = SolverWorker(isolation="thread", on_result=seen.append)
    result = worker.solve(_quick_payload(), timeout=10)
    assert result is not None
    assert result.status is SolveStatus.SUCCESS
    assert result.plan.position_of("amy").row == 0
    assert seen == [result]
    assert worker.last_result is result
    assert worker.busy is False


def test_thread_worker_does_not_share_payload_with_caller():
    worker = SolverWorker(isolation="thread")
    payload = _quick_payload()
    worker.start(payload)
    payload["students"].append("intruder")
    result = worker.join(timeout=10)
    assert result.ok
    assert "intruder" not in result.plan.occupied().values()


def test_second_start_while_busy_raises_then_cancel_and_restart():
    worker = SolverWorker(isolation="thread")
    worker.start(_thrash_payload())
    try:
        assert worker.busy
        with pytest.raises(WorkerBusyError):
            worker.start(_quick_payload())
    finally:
        assert worker.cancel() is True
    result = worker.join(timeout=10)
    assert result is not None
    assert result.status is SolveStatus.ABORTED
    assert not worker.busy

    # a fresh token per solve: the previous cancel must not leak into this one
    again = worker.solve(_quick_payload(), timeout=10)
    assert again.status is SolveStatus.SUCCESS


def test_progress_messages_precede_the_result(monkeypatch):
    monkeypatch.setattr(CFG, "YIELD_EVERY", 50)
    events = []
    worker = SolverWorker(
        isolation="thread",
        on_progress=lambda placed, total: events.append(("progress", placed, total)),
        on_result=lambda result: events.append(("result", result.status)),
    )
    result = worker.solve(_thrash_payload(timeLimitSec=1), timeout=10)
    assert result.status is SolveStatus.TIMEOUT
    assert events[-1] == ("result", SolveStatus.TIMEOUT)
    progress = events[:-1]
    assert progress
    assert all(kind == "progress" and 0 <= placed <= total == 16 for kind, placed, total in progress)


def test_callback_failures_do_not_wedge_the_worker():
    def explode(*_):
        raise RuntimeError("callback bug")

    worker = SolverWorker(isolation="thread", on_result=explode)
    result = worker.solve(_quick_payload(), timeout=10)
    assert result.ok
    assert not worker.busy


def test_bad_payload_comes_back_as_error_result():
    worker = SolverWorker(isolation="thread")
    result = worker.solve(_quick_payload(numRows=-1), timeout=10)
    assert result.status is SolveStatus.ERROR
    assert "numRows" in result.message


def test_process_worker_solves_in_child():
    seen = []
    worker = SolverWorker(isolation="process", on_result=seen.append)
    result = worker.solve(_quick_payload(), timeout=60)
    assert result is not None
    assert result.status is SolveStatus.SUCCESS
    assert sorted(result.plan.occupied().values()) == ["amy", "bob", "cat", "dan"]
    assert result.seed == 5
    assert seen == [result]


def test_process_worker_group_mode():
    payload = {
        "mode": "groups",
        "students": ["a", "b", "c", "d"],
        "numGroups": 2,
        "capacity": 2,
        "seed": 2,
    }
    result = SolverWorker(isolation="process").solve(payload, timeout=60)
    assert result.status is SolveStatus.SUCCESS
    assert sorted(len(g) for g in result.plan.groups) == [2, 2]


def test_process_worker_cancel_reaches_child():
    worker = SolverWorker(isolation="process")
    worker.start(_thrash_payload())
    # give the child time to spawn and start searching
    time.sleep(1.0)
    assert worker.cancel() is True
    result = worker.join(timeout=30)
    assert result is not None
    assert result.status is SolveStatus.ABORTED
    assert not worker.busy


def test_process_worker_backstop_times_out_a_stuck_child(monkeypatch):
    monkeypatch.setattr(CFG, "WORKER_GRACE_SEC", 0.0)
    worker = SolverWorker(isolation="process")
    started = time.monotonic()
    # the child's own deadline and the parent's backstop race; either way the
    # caller gets a timeout well before the child could exhaust the search
    result = worker.solve(_thrash_payload(timeLimitSec=1), timeout=60)
    assert result.status is SolveStatus.TIMEOUT
    assert time.monotonic() - started < 30


def test_join_from_other_thread_sees_same_result():
    worker = SolverWorker(isolation="thread")
    worker.start(_quick_payload())
    results = []
    t = threading.Thread(target=lambda: results.append(worker.join(timeout=10)))
    t.start()
    t.join(10)
    assert results and results[0] is worker.join(timeout=10)
