# Orchestrator: payload → typed request → fast path / precheck / search → result
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from config import CFG, clamp_time_limit
from models import (
    GroupRequest,
    SolveRequest,
    SolveResult,
    SolveStatus,
    ValidationError,
)
from progress import log_attempt_detail
from solver.constraint_index import (
    ConstraintIndex,
    adjacency_partners,
    coerce_constraints,
    precheck_feasibility,
)
from solver.grid import GridSearch, fast_fill
from solver.groups import GroupSearch
from solver.shuffle import normalize_seed, seeded_shuffle

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]


# ---------- payload coercion ----------

def _as_int(label: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationError(f"{label} must be an integer, got {value!r}")


def _as_seed(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"seed must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"seed must be an integer, got {value!r}") from None


def _entities_from_payload(payload: Dict[str, Any]) -> List[str]:
    raw = payload.get("students", payload.get("entities"))
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("students must be a list of names")
    return list(raw)


def grid_request_from_payload(payload: Dict[str, Any]) -> SolveRequest:
    """Build a grid :class:`SolveRequest` from the worker's ``start`` payload."""
    heights = payload.get("studentsWithHeightMap", payload.get("heights")) or {}
    if not isinstance(heights, dict):
        raise ValidationError("heights must be a mapping of name to number")
    time_limit = payload.get("timeLimitSec")
    request = SolveRequest(
        entities=_entities_from_payload(payload),
        num_rows=_as_int("numRows", payload.get("numRows")),
        num_cols=_as_int("numCols", payload.get("numCols")),
        heights=dict(heights),
        constraints=coerce_constraints(payload.get("constraints")),
        time_limit_sec=None if time_limit is None else clamp_time_limit(time_limit),
        height_rule=bool(payload.get("heightConstraintEnabled", False)),
        seed=_as_seed(payload.get("seed")),
    )
    request.validate()
    return request


def group_request_from_payload(payload: Dict[str, Any]) -> GroupRequest:
    request = GroupRequest(
        entities=_entities_from_payload(payload),
        num_groups=_as_int("numGroups", payload.get("numGroups")),
        capacity=_as_int("capacity", payload.get("capacity")),
        constraints=coerce_constraints(payload.get("constraints")),
        seed=_as_seed(payload.get("seed")),
    )
    request.validate()
    return request


def _resolve_seed(seed: Optional[int]) -> int:
    if seed is None:
        seed = CFG.SEED
    return normalize_seed(seed)


def _cancelled(cancel: Any) -> bool:
    return cancel is not None and cancel.is_set()


# ---------- public entrypoints ----------

def solve_grid(
    request: SolveRequest,
    *,
    cancel: Any = None,
    on_progress: Optional[ProgressFn] = None,
    on_yield: Optional[Callable[[], None]] = None,
) -> SolveResult:
    """Seat ``request.entities`` in the grid.  Never raises; failures are results."""
    t0 = time.monotonic()
    seed: Optional[int] = None
    steps = 0
    path = "search"

    def _finish(status: SolveStatus, message: str = "", plan=None) -> SolveResult:
        result = SolveResult(
            status=status,
            message=message,
            plan=plan,
            seed=seed,
            elapsed=time.monotonic() - t0,
            steps=steps,
        )
        log_attempt_detail(
            "Grid solve finished",
            path=path,
            status=status.value,
            seed=seed,
            steps=steps,
            duration=f"{result.elapsed:.3f}s",
            message=result.message if not result.ok else None,
        )
        return result

    try:
        request.validate()
        seed = _resolve_seed(request.seed)
        limit = clamp_time_limit(
            request.time_limit_sec if request.time_limit_sec is not None else CFG.TIME_LIMIT_SEC
        )
        deadline = t0 + limit
        entities = list(request.entities)
        constraints = list(request.constraints)
        log_attempt_detail(
            "Grid solve started",
            students=len(entities),
            grid=f"{request.num_rows}x{request.num_cols}",
            constraints=len(constraints),
            height_rule=request.height_rule,
            time_limit=f"{limit:g}s",
            seed=seed,
        )
        if _cancelled(cancel):
            return _finish(SolveStatus.ABORTED)

        if not constraints and not request.height_rule:
            path = "fast"
            plan = fast_fill(seeded_shuffle(entities, seed), request.num_rows, request.num_cols)
            if _cancelled(cancel):
                return _finish(SolveStatus.ABORTED)
            return _finish(SolveStatus.SUCCESS, plan=plan)

        index = ConstraintIndex(constraints, request.num_rows, request.num_cols)
        reason = precheck_feasibility(entities, index)
        if reason:
            path = "precheck"
            return _finish(SolveStatus.INFEASIBLE, f"Cannot generate: {reason}")

        search = GridSearch(
            seeded_shuffle(entities, seed),
            index,
            heights=request.heights,
            height_rule=request.height_rule,
            deadline=deadline,
            cancel=cancel,
            on_progress=on_progress,
            on_yield=on_yield,
        )
        status = search.run()
        steps = search.steps
        return _finish(status, plan=search.plan if status is SolveStatus.SUCCESS else None)

    except ValidationError as exc:
        return _finish(SolveStatus.ERROR, f"Invalid request: {exc}")
    except Exception as exc:
        logger.exception("grid solve crashed")
        return _finish(SolveStatus.ERROR, f"solver exception: {type(exc).__name__}: {exc}")


def solve_groups(request: GroupRequest, *, cancel: Any = None) -> SolveResult:
    """Pack ``request.entities`` into groups.  Never raises."""
    t0 = time.monotonic()
    seed: Optional[int] = None
    steps = 0

    def _finish(status: SolveStatus, message: str = "", plan=None) -> SolveResult:
        result = SolveResult(
            status=status,
            message=message,
            plan=plan,
            seed=seed,
            elapsed=time.monotonic() - t0,
            steps=steps,
        )
        log_attempt_detail(
            "Group solve finished",
            status=status.value,
            seed=seed,
            steps=steps,
            duration=f"{result.elapsed:.3f}s",
            message=result.message if not result.ok else None,
        )
        return result

    try:
        request.validate()
        seed = _resolve_seed(request.seed)
        ignored = sum(1 for c in request.constraints if c.kind != "not_adjacent")
        if ignored:
            logger.info("ignoring %d row/column preferences in group mode", ignored)
        log_attempt_detail(
            "Group solve started",
            students=len(request.entities),
            groups=request.num_groups,
            capacity=request.capacity,
            seed=seed,
        )
        if _cancelled(cancel):
            return _finish(SolveStatus.ABORTED)

        search = GroupSearch(
            seeded_shuffle(request.entities, seed),
            request.num_groups,
            request.capacity,
            adjacency_partners(request.constraints),
            cancel=cancel,
        )
        status = search.run()
        steps = search.steps
        return _finish(status, plan=search.plan if status is SolveStatus.SUCCESS else None)

    except ValidationError as exc:
        return _finish(SolveStatus.ERROR, f"Invalid request: {exc}")
    except Exception as exc:
        logger.exception("group solve crashed")
        return _finish(SolveStatus.ERROR, f"solver exception: {type(exc).__name__}: {exc}")


def run_request(
    payload: Any,
    *,
    cancel: Any = None,
    on_progress: Optional[ProgressFn] = None,
    on_yield: Optional[Callable[[], None]] = None,
) -> SolveResult:
    """Dispatch a raw ``start`` payload to the grid or group solver.  Never raises."""
    try:
        if not isinstance(payload, dict):
            raise ValidationError("request must be an object")
        mode = str(payload.get("mode") or "grid").strip().lower()
        if mode in ("groups", "group"):
            return solve_groups(group_request_from_payload(payload), cancel=cancel)
        if mode != "grid":
            raise ValidationError(f"unknown mode: {mode!r}")
        return solve_grid(
            grid_request_from_payload(payload),
            cancel=cancel,
            on_progress=on_progress,
            on_yield=on_yield,
        )
    except ValidationError as exc:
        return SolveResult(SolveStatus.ERROR, f"Invalid request: {exc}")
    except Exception as exc:
        logger.exception("request dispatch crashed")
        return SolveResult(SolveStatus.ERROR, f"orchestrator exception: {type(exc).__name__}: {exc}")


__all__ = [
    "grid_request_from_payload",
    "group_request_from_payload",
    "run_request",
    "solve_grid",
    "solve_groups",
]
