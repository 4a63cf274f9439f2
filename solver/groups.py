# solver/groups.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from models import GroupPlan, SolveStatus

logger = logging.getLogger(__name__)


@dataclass
class _Frame:
    idx: int
    groups: Iterator[int]
    placed: Optional[int] = None


class GroupSearch:
    """Balance-first packing of students into ``num_groups`` groups of ``capacity``.

    Students are taken in roster order; each one tries the emptiest groups
    first (ties by group index) and skips any group that already holds one of
    its ``not_adjacent`` partners.  Dead ends backtrack chronologically.
    There is no time budget, only the cancel token.
    """

    def __init__(
        self,
        order: Sequence[str],
        num_groups: int,
        capacity: int,
        partners: Optional[Dict[str, Set[str]]] = None,
        *,
        cancel: Any = None,
    ):
        self.order = list(order)
        self.capacity = int(capacity)
        self.partners = partners or {}
        self.cancel = cancel
        self.plan = GroupPlan.empty(int(num_groups), self.capacity)
        self.steps = 0

    def _choices(self, name: str) -> List[int]:
        groups = self.plan.groups
        blocked = self.partners.get(name, ())
        out = []
        for g in sorted(range(len(groups)), key=lambda k: len(groups[k])):
            members = groups[g]
            if len(members) >= self.capacity:
                continue
            if blocked and any(m in blocked for m in members):
                continue
            out.append(g)
        return out

    def run(self) -> SolveStatus:
        groups = self.plan.groups
        total = len(self.order)
        stack: List[_Frame] = []
        idx = 0
        descend = True

        while True:
            if self.cancel is not None and self.cancel.is_set():
                return SolveStatus.ABORTED
            if descend:
                if idx == total:
                    return SolveStatus.SUCCESS
                self.steps += 1
                stack.append(_Frame(idx, iter(self._choices(self.order[idx]))))

            frame = stack[-1]
            if frame.placed is not None:
                groups[frame.placed].pop()
                frame.placed = None

            g = next(frame.groups, None)
            if g is not None:
                groups[g].append(self.order[frame.idx])
                frame.placed = g
                idx = frame.idx + 1
                descend = True
                continue

            descend = False
            stack.pop()
            if not stack:
                logger.debug("group search exhausted after %d steps", self.steps)
                return SolveStatus.NO_SOLUTION


__all__ = ["GroupSearch"]
