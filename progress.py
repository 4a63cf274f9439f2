from __future__ import annotations

import json
import logging
import os
import time
import threading
from pathlib import Path
from typing import Any, Dict, Optional

# ------------------------------
# Thread-safe global progress state
# ------------------------------

PROGRESS_LOCK = threading.Lock()


def _state_file_path() -> Path:
    configured = os.environ.get("PROGRESS_STATE_FILE")
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "logs" / "progress_state.json"


def _log_file_path() -> Path:
    configured = os.environ.get("PROGRESS_LOG_FILE")
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "logs" / "solver_attempts.log"


STATE_FILE = _state_file_path()
STATE_FILE_TMP = STATE_FILE.with_name(STATE_FILE.name + ".tmp")
_LAST_STATE_MTIME: float = 0.0


def _init_logger() -> logging.Logger:
    logger = logging.getLogger("solver.attempt_log")
    if logger.handlers:
        return logger

    log_path = _log_file_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    except Exception:
        # A read-only checkout must still be able to solve.
        logger.handlers.clear()
    return logger


ATTEMPT_LOGGER = _init_logger()


def _log_enabled() -> bool:
    return bool(ATTEMPT_LOGGER.handlers)


def _fmt_seconds(seconds: Optional[float]) -> Optional[str]:
    if seconds is None:
        return None
    try:
        return f"{float(seconds):.2f}s"
    except Exception:
        return None


def _emit_log(event: str, **fields: Any) -> None:
    if not _log_enabled():
        return
    extras = [
        f"{key}={value}"
        for key, value in fields.items()
        if value is not None and value != ""
    ]
    try:
        if extras:
            ATTEMPT_LOGGER.info("%s | %s", event, " ".join(extras))
        else:
            ATTEMPT_LOGGER.info("%s", event)
    except Exception:
        # Logging failures must never bubble back to callers.
        pass


def log_attempt_detail(event: str, **fields: Any) -> None:
    """Write one ``event | key=value ...`` line to the attempt log."""
    _emit_log(event, **fields)


LOG_STATE: Dict[str, Any] = {
    "run_start": None,
    "mode": "",
}

# Single source of truth for the status endpoint
PROGRESS: Dict[str, Any] = {
    "status": "Idle",          # Idle | Solving | Solved | Error
    "mode": "",                # grid | groups
    "placed": 0,               # seats filled at the last report
    "total": 0,                # seats to fill
    "percent": 0.0,            # 0..100 float
    "seed": None,              # seed actually used
    "elapsed_start": None,     # t0 (float) when solving started
    "elapsed": 0.0,            # seconds snapshot
    "message": "",             # optional note
    "reason": "",              # success | infeasible | timeout | aborted | no_solution | error
    "done": False,             # run completed
    "ok": None,                # success flag if known
    "result_url": "",          # optional navigation target
    "run_id": 0,               # monotonically increasing identifier
    "entity_count": 0,
}


def _persist_locked() -> None:
    global _LAST_STATE_MTIME
    try:
        STATE_FILE.parent.mkdir(parents=True, exist_ok=True)
        with STATE_FILE_TMP.open("w", encoding="utf-8") as fh:
            json.dump(PROGRESS, fh, ensure_ascii=False, separators=(",", ":"))
        STATE_FILE_TMP.replace(STATE_FILE)
        try:
            _LAST_STATE_MTIME = STATE_FILE.stat().st_mtime
        except OSError:
            _LAST_STATE_MTIME = time.time()
    except Exception:
        # Persistence must never break solver progress updates.
        pass


def _load_persisted_locked() -> None:
    global _LAST_STATE_MTIME
    try:
        stat = STATE_FILE.stat()
    except OSError:
        return
    if stat.st_mtime <= _LAST_STATE_MTIME:
        return
    try:
        with STATE_FILE.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except Exception:
        return
    if not isinstance(data, dict):
        return
    for key in PROGRESS.keys():
        if key in data:
            PROGRESS[key] = data[key]
    _LAST_STATE_MTIME = stat.st_mtime


# ------------------------------
# Helpers
# ------------------------------

def _now() -> float:
    return time.time()


def _fmt_elapsed(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    if seconds < 60:
        return f"{seconds:.1f}s"
    m, s = divmod(int(seconds), 60)
    if m < 60:
        return f"{m}m {s}s"
    h, m = divmod(m, 60)
    return f"{h}h {m}m"


def reset() -> None:
    with PROGRESS_LOCK:
        try:
            current_run_id = int(PROGRESS.get("run_id", 0))
        except Exception:
            current_run_id = 0
        PROGRESS.update({
            "status": "Idle",
            "mode": "",
            "placed": 0,
            "total": 0,
            "percent": 0.0,
            "seed": None,
            "elapsed_start": None,
            "elapsed": 0.0,
            "message": "",
            "reason": "",
            "done": False,
            "ok": None,
            "result_url": "",
            "run_id": current_run_id + 1,
            "entity_count": 0,
        })
        LOG_STATE.update({"run_start": None, "mode": ""})
        _emit_log("Progress reset", run_id=PROGRESS["run_id"])
        _persist_locked()


def start_timer() -> None:
    with PROGRESS_LOCK:
        now = _now()
        PROGRESS["elapsed_start"] = now
        PROGRESS["elapsed"] = 0.0
        LOG_STATE["run_start"] = now
        _emit_log("Run timer started", run_id=PROGRESS["run_id"])
        _persist_locked()


def _touch_elapsed_locked() -> None:
    t0 = PROGRESS.get("elapsed_start")
    if t0 is not None:
        PROGRESS["elapsed"] = _now() - float(t0)

# ------------------------------
# Setters (tolerant)
# ------------------------------

def set_status(v: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["status"] = str(v)
        _persist_locked()


def set_mode(v: Any) -> None:
    with PROGRESS_LOCK:
        mode = "" if v is None else str(v)
        PROGRESS["mode"] = mode
        if mode != LOG_STATE.get("mode"):
            LOG_STATE["mode"] = mode
            _emit_log("Mode selected", mode=mode)
        _persist_locked()


def set_seed(v: Any) -> None:
    try:
        seed = None if v is None else int(v)
    except Exception:
        seed = None
    with PROGRESS_LOCK:
        PROGRESS["seed"] = seed
        _persist_locked()


def set_entity_count(n: Any) -> None:
    try:
        i = int(n)
    except Exception:
        i = 0
    with PROGRESS_LOCK:
        PROGRESS["entity_count"] = max(0, i)
        _persist_locked()


def set_placed(placed: Any, total: Any) -> None:
    """Record a ``(placed, total)`` report and derive the percentage from it."""
    try:
        p = max(0, int(placed))
        t = max(0, int(total))
    except Exception:
        return
    pct = (100.0 * p / t) if t else 0.0
    with PROGRESS_LOCK:
        PROGRESS["placed"] = p
        PROGRESS["total"] = t
        PROGRESS["percent"] = max(0.0, min(100.0, pct))
        _touch_elapsed_locked()
        _persist_locked()


def set_elapsed(seconds: Any) -> None:
    try:
        f = float(seconds)
    except Exception:
        f = 0.0
    with PROGRESS_LOCK:
        PROGRESS["elapsed"] = max(0.0, f)
        _persist_locked()


def set_result_url(url: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["result_url"] = "" if url is None else str(url)
        _persist_locked()


def set_done(ok: Any = None, *, reason: Any = None, message: Any = None) -> None:
    """Mark the run complete.

    ``ok`` picks the final status (``"Solved"``/``"Error"``); when omitted the
    status defaults to ``"Solved"`` unless a failure was already recorded.
    ``reason`` is the result classification (``timeout``, ``aborted`` ...)
    and ``message`` the human-readable explanation.
    """

    final_status: Optional[str] = None
    ok_flag: Optional[bool] = None
    if ok is not None:
        ok_flag = bool(ok)
        final_status = "Solved" if ok_flag else "Error"

    with PROGRESS_LOCK:
        _touch_elapsed_locked()
        now = _now()
        if final_status is not None:
            PROGRESS["status"] = final_status
        elif PROGRESS.get("status") in ("", "Idle", "Solving", None):
            PROGRESS["status"] = "Solved"
            ok_flag = True
        PROGRESS["percent"] = 100.0
        if reason is not None:
            PROGRESS["reason"] = str(reason)
        if message is not None:
            PROGRESS["message"] = str(message)
        PROGRESS["done"] = True
        if ok_flag is not None:
            PROGRESS["ok"] = ok_flag
        run_start = LOG_STATE.get("run_start")
        if isinstance(run_start, (int, float)):
            total = max(0.0, now - float(run_start))
        else:
            total = None
        LOG_STATE["run_start"] = None
        _emit_log(
            "Run finished",
            run_id=PROGRESS.get("run_id"),
            mode=PROGRESS.get("mode"),
            status=PROGRESS.get("status"),
            ok=PROGRESS.get("ok"),
            reason=PROGRESS.get("reason"),
            seed=PROGRESS.get("seed"),
            duration=_fmt_seconds(total),
            placed=f"{PROGRESS.get('placed')}/{PROGRESS.get('total')}",
            message=PROGRESS.get("message"),
        )
        _persist_locked()

# ------------------------------
# Snapshots for the API
# ------------------------------

def snapshot() -> Dict[str, Any]:
    with PROGRESS_LOCK:
        _load_persisted_locked()
        _touch_elapsed_locked()
        return {
            "status": PROGRESS["status"],
            "mode": PROGRESS["mode"],
            "placed": PROGRESS["placed"],
            "total": PROGRESS["total"],
            "percent": PROGRESS["percent"],
            "seed": PROGRESS["seed"],
            "elapsed": PROGRESS["elapsed"],
            "elapsed_str": _fmt_elapsed(PROGRESS["elapsed"]),
            "message": PROGRESS["message"],
            "reason": PROGRESS["reason"],
            "done": PROGRESS["done"],
            "ok": PROGRESS["ok"],
            "result_url": PROGRESS["result_url"],
            "run_id": PROGRESS["run_id"],
            "entity_count": PROGRESS["entity_count"],
        }


def as_json() -> Dict[str, Any]:
    # Alias used by /progress
    return snapshot()


def _skip_stale_state_locked() -> None:
    """Treat a state file left by a previous server run as already seen."""
    global _LAST_STATE_MTIME
    try:
        _LAST_STATE_MTIME = STATE_FILE.stat().st_mtime
    except OSError:
        pass


with PROGRESS_LOCK:
    _skip_stale_state_locked()
