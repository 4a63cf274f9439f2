# solver/constraint_index.py
from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from models import Constraint, NotAdjacent, PreferredCols, PreferredRows, ValidationError

Range = Tuple[int, int]  # 1-based, inclusive

_RANGE_RE = re.compile(r"^\s*(?P<s>\d+)\s*(?:-\s*(?P<e>\d+))?\s*$")


# ---------------- raw payload coercion ----------------

def parse_range(raw: Any) -> Range:
    """Accept ``"2-4"``, ``"3"``, ``[2, 4]`` or ``3`` and return ``(start, end)``."""
    if isinstance(raw, bool):
        raise ValidationError(f"bad range: {raw!r}")
    if isinstance(raw, int):
        return int(raw), int(raw)
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        try:
            return int(raw[0]), int(raw[1])
        except (TypeError, ValueError):
            raise ValidationError(f"bad range: {raw!r}") from None
    m = _RANGE_RE.match(str(raw))
    if not m:
        raise ValidationError(f"bad range: {raw!r}")
    start = int(m.group("s"))
    end = int(m.group("e")) if m.group("e") is not None else start
    return start, end


def _name(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"constraint names must be non-empty strings, got {value!r}")
    return value


def coerce_constraint(raw: Any) -> Constraint:
    """Turn one wire-format constraint dict into a typed constraint."""
    if isinstance(raw, (PreferredRows, PreferredCols, NotAdjacent)):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError(f"constraint must be an object, got {type(raw).__name__}")

    kind = str(raw.get("type") or "").strip().lower()
    names = raw.get("students", raw.get("entities"))
    if not isinstance(names, (list, tuple)) or not names:
        raise ValidationError(f"constraint {kind or '?'} names no students")

    if kind in (PreferredRows.kind, PreferredCols.kind):
        entity = _name(names[0])
        if "range" in raw:
            spec = raw["range"]
        elif len(names) > 1:
            spec = names[1]
        else:
            raise ValidationError(f"{kind} for {entity} has no range")
        start, end = parse_range(spec)
        cls = PreferredRows if kind == PreferredRows.kind else PreferredCols
        return cls(entity, start, end)

    if kind == NotAdjacent.kind:
        if len(names) < 2:
            raise ValidationError("not_adjacent needs two students")
        return NotAdjacent(_name(names[0]), _name(names[1]))

    raise ValidationError(f"unknown constraint type: {raw.get('type')!r}")


def coerce_constraints(raws: Optional[Iterable[Any]]) -> List[Constraint]:
    return [coerce_constraint(raw) for raw in (raws or [])]


# ---------------- index ----------------

def adjacency_partners(constraints: Iterable[Constraint]) -> Dict[str, Set[str]]:
    """Symmetric name → {names it must not sit next to}."""
    partners: Dict[str, Set[str]] = defaultdict(set)
    for cons in constraints:
        if isinstance(cons, NotAdjacent):
            partners[cons.a].add(cons.b)
            partners[cons.b].add(cons.a)
    return dict(partners)


def within_range(rng: Range, value: int) -> bool:
    return rng[0] <= value <= rng[1]


class ConstraintIndex:
    """Per-solve lookup of each student's allowed rows/cols and exclusion partners.

    Later ``PreferredRows``/``PreferredCols`` entries for the same student
    replace earlier ones.
    """

    def __init__(self, constraints: Sequence[Constraint], num_rows: int, num_cols: int):
        self.num_rows = int(num_rows)
        self.num_cols = int(num_cols)
        self._rows: Dict[str, Range] = {}
        self._cols: Dict[str, Range] = {}
        for cons in constraints:
            if isinstance(cons, PreferredRows):
                self._rows[cons.entity] = (cons.start, cons.end)
            elif isinstance(cons, PreferredCols):
                self._cols[cons.entity] = (cons.start, cons.end)
            elif not isinstance(cons, NotAdjacent):
                raise TypeError(f"unsupported constraint: {cons!r}")
        self._partners = adjacency_partners(constraints)

    def row_range(self, name: str) -> Range:
        return self._rows.get(name, (1, self.num_rows))

    def col_range(self, name: str) -> Range:
        return self._cols.get(name, (1, self.num_cols))

    def domain_width(self, name: str) -> int:
        rs, re_ = self.row_range(name)
        cs, ce = self.col_range(name)
        return (re_ - rs) + (ce - cs)

    def admits(self, name: str, row: int, col: int) -> bool:
        """``row``/``col`` are 0-based grid indices."""
        return within_range(self.row_range(name), row + 1) and within_range(self.col_range(name), col + 1)

    def partners(self, name: str) -> Set[str]:
        return self._partners.get(name, set())

    def forbids(self, a: str, b: str) -> bool:
        return b in self._partners.get(a, ())


def precheck_feasibility(entities: Iterable[str], index: ConstraintIndex) -> Optional[str]:
    """Return a reason string for the first structurally impossible student, else ``None``."""
    for name in entities:
        rs, re_ = index.row_range(name)
        cs, ce = index.col_range(name)
        if rs > re_ or cs > ce:
            return f"the row/column preference for {name} is empty (no seat can satisfy it)."
        if rs < 1 or re_ > index.num_rows or cs < 1 or ce > index.num_cols:
            return f"the row/column preference for {name} lies outside the classroom."
    return None


__all__ = [
    "ConstraintIndex",
    "adjacency_partners",
    "coerce_constraint",
    "coerce_constraints",
    "parse_range",
    "precheck_feasibility",
    "within_range",
]
