# solver/worker.py
"""Run one solve at a time off the caller's thread.

The caller talks to the solver only through messages: ``start`` carries the
request payload, ``cancel`` trips the per-solve cancel token, and the solver
answers with any number of ``progress`` messages followed by exactly one
``result``.  With ``isolation="process"`` the search runs in a spawned child
so a runaway search can be terminated without touching the host process.
"""
from __future__ import annotations

import copy
import logging
import threading
import time
import multiprocessing as mp
from typing import Any, Callable, Optional

from config import CFG, clamp_time_limit
from models import SolveResult, SolveStatus
from solver.orchestrator import run_request

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]
ResultFn = Callable[[SolveResult], None]

ISOLATION_MODES = ("process", "thread")


class WorkerBusyError(RuntimeError):
    """Raised when ``start`` is called while a solve is still in flight."""


# ---------- child process ----------

# Must stay top-level so the spawn start method can pickle it.
def _process_main(conn, cancel_event) -> None:
    try:
        message = conn.recv()
    except (EOFError, OSError):
        return

    kind, payload = message if isinstance(message, tuple) and len(message) == 2 else (None, None)
    if kind != "start":
        out = SolveResult(SolveStatus.ERROR, f"expected a start message, got {kind!r}").to_payload()
        try:
            conn.send(("result", out))
        except (BrokenPipeError, OSError):
            pass
        conn.close()
        return

    def _drain_messages() -> None:
        try:
            while conn.poll():
                kind, _ = conn.recv()
                if kind == "cancel":
                    cancel_event.set()
        except (EOFError, OSError):
            # Parent went away; nobody is waiting for the answer.
            cancel_event.set()

    def _send_progress(placed: int, total: int) -> None:
        try:
            conn.send(("progress", {"placed": int(placed), "total": int(total)}))
        except (BrokenPipeError, OSError):
            cancel_event.set()

    try:
        result = run_request(
            payload,
            cancel=cancel_event,
            on_progress=_send_progress,
            on_yield=_drain_messages,
        )
        out = result.to_payload()
    except Exception as e:
        out = SolveResult(SolveStatus.ERROR, f"worker exception: {type(e).__name__}: {e}").to_payload()

    try:
        conn.send(("result", out))
    except (BrokenPipeError, OSError):
        pass
    finally:
        try:
            conn.close()
        except OSError:
            pass


def _terminate_process(proc, grace: float = 0.2) -> None:
    """Best-effort helper that tears down ``proc`` within ``grace`` seconds."""

    try:
        proc.join(timeout=grace)
    except Exception:
        pass
    if not proc.is_alive():
        return

    try:
        proc.terminate()
    except Exception:
        pass
    try:
        proc.join(timeout=grace)
    except Exception:
        pass
    if not proc.is_alive():
        return

    try:
        proc.kill()
    except Exception:
        pass
    try:
        proc.join(timeout=grace)
    except Exception:
        pass


def _backstop_seconds(payload: Any) -> Optional[float]:
    """Hard wall-clock cap for a child process; ``None`` for group mode."""
    if not isinstance(payload, dict):
        return float(CFG.WORKER_GRACE_SEC)
    if str(payload.get("mode") or "grid").strip().lower() in ("groups", "group"):
        return None
    limit = payload.get("timeLimitSec")
    limit = CFG.TIME_LIMIT_SEC if limit is None else limit
    return clamp_time_limit(limit) + float(CFG.WORKER_GRACE_SEC)


# ---------- parent side ----------

class SolverWorker:
    """Owns at most one in-flight solve and relays its messages to callbacks.

    ``on_progress(placed, total)`` and ``on_result(result)`` run on a worker
    thread, never on the caller's.  Each solve gets a fresh cancel token, and
    a second :meth:`start` while one is running raises :class:`WorkerBusyError`.
    """

    def __init__(
        self,
        *,
        isolation: Optional[str] = None,
        on_progress: Optional[ProgressFn] = None,
        on_result: Optional[ResultFn] = None,
    ):
        mode = (isolation or CFG.WORKER_ISOLATION or "process").strip().lower()
        if mode not in ISOLATION_MODES:
            raise ValueError(f"isolation must be one of {ISOLATION_MODES}, got {mode!r}")
        self.isolation = mode
        self.on_progress = on_progress
        self.on_result = on_result

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._done.set()
        self._cancel: Any = None
        self._conn: Any = None
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[SolveResult] = None

    @property
    def busy(self) -> bool:
        return not self._done.is_set()

    @property
    def last_result(self) -> Optional[SolveResult]:
        return self._result

    def start(self, payload: Any) -> None:
        with self._lock:
            if self.busy:
                raise WorkerBusyError("a solve is already running on this worker")
            self._done.clear()
            self._result = None
            try:
                if self.isolation == "thread":
                    self._start_thread(payload)
                else:
                    self._start_process(payload)
            except Exception:
                self._cancel = None
                self._conn = None
                self._done.set()
                raise

    def cancel(self) -> bool:
        """Ask the running solve to stop; returns ``False`` when idle."""
        with self._lock:
            if not self.busy:
                return False
            if self._cancel is not None:
                self._cancel.set()
            conn = self._conn
        if conn is not None:
            try:
                conn.send(("cancel", None))
            except (BrokenPipeError, OSError):
                pass
        logger.info("cancel requested")
        return True

    def join(self, timeout: Optional[float] = None) -> Optional[SolveResult]:
        if not self._done.wait(timeout):
            return None
        return self._result

    def solve(self, payload: Any, timeout: Optional[float] = None) -> Optional[SolveResult]:
        self.start(payload)
        return self.join(timeout)

    # ---------- internals ----------

    def _emit_progress(self, placed: int, total: int) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(int(placed), int(total))
        except Exception:
            logger.exception("progress callback failed")

    def _deliver(self, result: SolveResult) -> None:
        self._result = result
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("result callback failed")
        with self._lock:
            self._cancel = None
            self._conn = None
            self._thread = None
            self._done.set()

    def _start_thread(self, payload: Any) -> None:
        cancel = threading.Event()
        request = copy.deepcopy(payload)

        def _run() -> None:
            try:
                result = run_request(request, cancel=cancel, on_progress=self._emit_progress)
            except Exception as e:
                logger.exception("solver thread crashed")
                result = SolveResult(SolveStatus.ERROR, f"worker exception: {type(e).__name__}: {e}")
            self._deliver(result)

        self._cancel = cancel
        self._thread = threading.Thread(target=_run, name="seat-solver", daemon=True)
        self._thread.start()

    def _start_process(self, payload: Any) -> None:
        ctx = mp.get_context("spawn")  # safest on Windows
        parent, child = ctx.Pipe(duplex=True)
        cancel = ctx.Event()
        proc = ctx.Process(target=_process_main, args=(child, cancel))
        proc.daemon = True
        proc.start()
        try:
            child.close()
        except OSError:
            pass
        parent.send(("start", payload))

        self._cancel = cancel
        self._conn = parent
        self._thread = threading.Thread(
            target=self._pump,
            args=(parent, proc, _backstop_seconds(payload)),
            name="seat-solver-pump",
            daemon=True,
        )
        self._thread.start()

    def _pump(self, conn, proc, backstop: Optional[float]) -> None:
        deadline = None if backstop is None else time.monotonic() + backstop
        result: Optional[SolveResult] = None

        while result is None:
            if deadline is not None and time.monotonic() >= deadline:
                result = SolveResult(
                    SolveStatus.TIMEOUT,
                    "Stopped before solution (timebox); worker terminated.",
                )
                break
            try:
                ready = conn.poll(CFG.WORKER_POLL_SEC)
            except (EOFError, OSError):
                ready = True
            if not ready:
                if not proc.is_alive() and not conn.poll(0):
                    result = SolveResult(
                        SolveStatus.ERROR,
                        f"worker exited without a result (exit code {proc.exitcode})",
                    )
                continue
            try:
                kind, body = conn.recv()
            except (EOFError, OSError):
                result = SolveResult(
                    SolveStatus.ERROR,
                    f"worker pipe closed early (exit code {proc.exitcode})",
                )
                break
            if kind == "progress":
                self._emit_progress(body.get("placed", 0), body.get("total", 0))
            elif kind == "result":
                result = SolveResult.from_payload(body)
            else:
                logger.warning("ignoring unexpected worker message %r", kind)

        _terminate_process(proc)
        try:
            conn.close()
        except OSError:
            pass
        self._deliver(result)


__all__ = ["ISOLATION_MODES", "SolverWorker", "WorkerBusyError"]
