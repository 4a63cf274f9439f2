# app.py: JSON front for the seat solver; progress no-cache
from __future__ import annotations

import logging
import threading
from typing import Any, Dict

from flask import Flask, jsonify, request, url_for

from config import CFG
from models import SolveResult
from progress import (
    reset as progress_reset,
    as_json as progress_json,
    start_timer as progress_start,
    set_status, set_mode, set_seed, set_entity_count, set_placed,
    set_elapsed, set_done, set_result_url,
)
from solver.worker import SolverWorker, WorkerBusyError

logger = logging.getLogger(__name__)

_RESULT_LOCK = threading.Lock()
_SOLVE_LOCK = threading.Lock()
LAST_RESULT: Dict[str, Any] = {
    "ok": False,
    "reason": "idle",
    "message": "No solve has run yet.",
    "run_id": 0,
}

app = Flask(__name__)


def _finalize_solver_progress(result: SolveResult) -> None:
    """Write the terminal solver status without clobbering failure states."""

    set_status("Solved" if result.ok else "Error")
    set_seed(result.seed)
    set_elapsed(result.elapsed)
    set_done(result.ok, reason=result.status.value, message=result.message)


def _on_progress(placed: int, total: int) -> None:
    set_placed(placed, total)


def _on_result(result: SolveResult) -> None:
    _finalize_solver_progress(result)
    payload = result.to_payload()
    payload["run_id"] = progress_json()["run_id"]
    with _RESULT_LOCK:
        LAST_RESULT.clear()
        LAST_RESULT.update(payload)


WORKER = SolverWorker(on_progress=_on_progress, on_result=_on_result)


def _error(message: str, status: int, reason: str = "error"):
    return jsonify({"ok": False, "reason": reason, "message": message}), status


@app.after_request
def _no_cache_progress(resp):
    if request.path == "/progress":
        resp.headers["Cache-Control"] = "no-store, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


@app.route("/solve", methods=["POST"])
def solve():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("request body must be a JSON object", 400)

    # Busy check, progress reset and start happen under one lock; only the
    # request that claims the worker may touch progress.
    with _SOLVE_LOCK:
        if WORKER.busy:
            return _error("a solve is already running", 409, reason="busy")

        progress_reset()
        progress_start()
        set_status("Solving")
        set_mode(str(payload.get("mode") or "grid").lower())
        students = payload.get("students", payload.get("entities"))
        set_entity_count(len(students) if isinstance(students, (list, tuple)) else 0)
        set_result_url(url_for("result_latest"))
        run_id = progress_json()["run_id"]

        try:
            WORKER.start(payload)
        except WorkerBusyError as e:
            return _error(str(e), 409, reason="busy")

    if payload.get("wait"):
        result = WORKER.join(CFG.WAIT_TIMEOUT_SEC)
        if result is None:
            # Group mode has no time budget of its own.
            logger.warning("blocking solve exceeded %ss; cancelling", CFG.WAIT_TIMEOUT_SEC)
            WORKER.cancel()
            result = WORKER.join(CFG.WORKER_GRACE_SEC)
        out = result.to_payload() if result is not None else {"ok": False, "reason": "error"}
        out["run_id"] = run_id
        return jsonify(out)

    return jsonify({"ok": True, "status": "Solving", "run_id": run_id}), 202


@app.route("/cancel", methods=["POST"])
def cancel():
    return jsonify({"cancelled": WORKER.cancel()})


@app.route("/result/latest")
def result_latest():
    with _RESULT_LOCK:
        return jsonify(dict(LAST_RESULT))


@app.route("/progress")
def progress():
    return jsonify(progress_json())


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, CFG.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app.run(debug=False)
