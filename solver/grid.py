# solver/grid.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from config import CFG
from models import GridCell, GridPlan, SolveStatus, is_height
from solver.constraint_index import ConstraintIndex

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]


def build_seat_order(num_rows: int, num_cols: int, n: Optional[int] = None) -> List[GridCell]:
    """Front rows first, last row last; truncated to ``n`` seats when given.

    Filling in this order leaves any empty seats at the right end of the last
    row instead of scattering gaps through the room.
    """
    order = [GridCell(r, c) for r in range(max(0, num_rows - 1)) for c in range(num_cols)]
    if num_rows > 0:
        order.extend(GridCell(num_rows - 1, c) for c in range(num_cols))
    if n is None:
        return order
    return order[: max(0, int(n))]


def fast_fill(shuffled: Sequence[str], num_rows: int, num_cols: int) -> GridPlan:
    """Drop an already-shuffled roster straight into the seat order."""
    plan = GridPlan.empty(num_rows, num_cols)
    for cell, name in zip(build_seat_order(num_rows, num_cols, len(shuffled)), shuffled):
        plan.seats[cell.row][cell.col] = name
    return plan


@dataclass
class _Frame:
    idx: int
    candidates: Iterator[str]
    placed: Optional[str] = None


class GridSearch:
    """Depth-first seat filler with static most-constrained-first ordering.

    Seats are visited in :func:`build_seat_order` order.  At each seat the
    unused students whose row/col ranges admit it are tried narrowest-domain
    first (ties keep the shuffled roster order).  The first complete
    assignment wins; there is no scoring.

    The search keeps an explicit frame stack instead of recursing so large
    rooms never hit the interpreter's recursion limit.  The cancel token and
    the deadline are checked on every node entry, and every ``yield_every``
    entries the search reports ``(placed, total)`` and yields.
    """

    def __init__(
        self,
        order: Sequence[str],
        index: ConstraintIndex,
        *,
        heights: Optional[Dict[str, Any]] = None,
        height_rule: bool = False,
        deadline: Optional[float] = None,
        cancel: Any = None,
        on_progress: Optional[ProgressFn] = None,
        on_yield: Optional[Callable[[], None]] = None,
        yield_every: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.order = list(order)
        self.index = index
        self.heights = dict(heights or {})
        self.height_rule = bool(height_rule)
        self.deadline = deadline
        self.cancel = cancel
        self.on_progress = on_progress
        self.on_yield = on_yield
        self.yield_every = max(1, int(yield_every or CFG.YIELD_EVERY))
        self.clock = clock

        self.seats = build_seat_order(index.num_rows, index.num_cols, len(self.order))
        self.plan = GridPlan.empty(index.num_rows, index.num_cols)
        self.used: set = set()
        self.steps = 0

    # ---------- checks ----------

    def _interrupted(self) -> Optional[SolveStatus]:
        if self.cancel is not None and self.cancel.is_set():
            return SolveStatus.ABORTED
        if self.deadline is not None and self.clock() > self.deadline:
            return SolveStatus.TIMEOUT
        return None

    def _tick(self, idx: int) -> Optional[SolveStatus]:
        self.steps += 1
        if self.steps % self.yield_every:
            return None
        if self.on_progress is not None:
            self.on_progress(idx, len(self.seats))
        if self.on_yield is not None:
            self.on_yield()
        time.sleep(0)
        return self._interrupted()

    def _candidates(self, cell: GridCell) -> List[str]:
        out = [
            name
            for name in self.order
            if name not in self.used and self.index.admits(name, cell.row, cell.col)
        ]
        out.sort(key=self.index.domain_width)
        return out

    def _valid(self, name: str, cell: GridCell) -> bool:
        seats = self.plan.seats
        r, c = cell.row, cell.col

        # Nobody may be taller than the student directly in front.
        if self.height_rule and r > 0:
            front = seats[r - 1][c]
            if front is not None:
                mine = self.heights.get(name)
                theirs = self.heights.get(front)
                if is_height(mine) and is_height(theirs) and mine > theirs:
                    return False

        if self.index.partners(name):
            last_row = self.index.num_rows - 1
            last_col = self.index.num_cols - 1
            for rr in range(max(0, r - 1), min(last_row, r + 1) + 1):
                for cc in range(max(0, c - 1), min(last_col, c + 1) + 1):
                    if rr == r and cc == c:
                        continue
                    other = seats[rr][cc]
                    if other is not None and self.index.forbids(name, other):
                        return False

        # Candidates are pre-filtered by range; keep the check so new
        # candidate sources cannot bypass it.
        return self.index.admits(name, r, c)

    # ---------- search ----------

    def run(self) -> SolveStatus:
        total = len(self.seats)
        seats = self.plan.seats
        stack: List[_Frame] = []
        idx = 0
        descend = True

        while True:
            if descend:
                status = self._interrupted()
                if status is not None:
                    return status
                if idx == total:
                    return SolveStatus.SUCCESS
                status = self._tick(idx)
                if status is not None:
                    return status
                stack.append(_Frame(idx, iter(self._candidates(self.seats[idx]))))

            frame = stack[-1]
            cell = self.seats[frame.idx]
            if frame.placed is not None:
                self.used.discard(frame.placed)
                seats[cell.row][cell.col] = None
                frame.placed = None

            descend = False
            for name in frame.candidates:
                seats[cell.row][cell.col] = name
                if self._valid(name, cell):
                    self.used.add(name)
                    frame.placed = name
                    idx = frame.idx + 1
                    descend = True
                    break
                seats[cell.row][cell.col] = None
            if descend:
                continue

            stack.pop()
            if not stack:
                logger.debug("grid search exhausted after %d steps", self.steps)
                return SolveStatus.NO_SOLUTION


__all__ = ["GridSearch", "build_seat_order", "fast_fill"]
