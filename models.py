from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union


class ValidationError(ValueError):
    """Raised when a request or constraint payload is malformed."""


# ---------------- slots ----------------

@dataclass(frozen=True)
class GridCell:
    row: int  # 0-based
    col: int  # 0-based


@dataclass(frozen=True)
class Group:
    index: int


# ---------------- constraints ----------------

@dataclass(frozen=True)
class PreferredRows:
    entity: str
    start: int  # 1-based, inclusive
    end: int
    kind: ClassVar[str] = "preferred_rows"


@dataclass(frozen=True)
class PreferredCols:
    entity: str
    start: int  # 1-based, inclusive
    end: int
    kind: ClassVar[str] = "preferred_cols"


@dataclass(frozen=True)
class NotAdjacent:
    a: str
    b: str
    kind: ClassVar[str] = "not_adjacent"


Constraint = Union[PreferredRows, PreferredCols, NotAdjacent]


def is_height(value: Any) -> bool:
    """Heights only take part in comparisons when they are real numbers."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_entities(entities: Iterable[Any]) -> List[str]:
    names = list(entities)
    seen = set()
    for name in names:
        if not isinstance(name, str) or not name:
            raise ValidationError(f"entity names must be non-empty strings, got {name!r}")
        if name in seen:
            raise ValidationError(f"duplicate entity name: {name}")
        seen.add(name)
    return names


def _check_positive_int(label: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} must be a positive integer, got {value!r}")


# ---------------- requests ----------------

@dataclass
class SolveRequest:
    entities: List[str]
    num_rows: int
    num_cols: int
    heights: Dict[str, Any] = field(default_factory=dict)
    constraints: List[Constraint] = field(default_factory=list)
    time_limit_sec: Optional[float] = None
    height_rule: bool = False
    seed: Optional[int] = None

    @property
    def capacity(self) -> int:
        return self.num_rows * self.num_cols

    def validate(self) -> None:
        _check_positive_int("numRows", self.num_rows)
        _check_positive_int("numCols", self.num_cols)
        names = _check_entities(self.entities)
        if len(names) > self.capacity:
            raise ValidationError(
                f"{len(names)} students do not fit into {self.num_rows} × {self.num_cols} seats"
            )


@dataclass
class GroupRequest:
    entities: List[str]
    num_groups: int
    capacity: int
    constraints: List[Constraint] = field(default_factory=list)
    seed: Optional[int] = None

    def validate(self) -> None:
        _check_positive_int("numGroups", self.num_groups)
        _check_positive_int("capacity", self.capacity)
        names = _check_entities(self.entities)
        if len(names) > self.num_groups * self.capacity:
            raise ValidationError(
                f"{len(names)} students do not fit into {self.num_groups} groups of {self.capacity}"
            )


# ---------------- plans ----------------

@dataclass
class GridPlan:
    seats: List[List[Optional[str]]]

    @classmethod
    def empty(cls, num_rows: int, num_cols: int) -> "GridPlan":
        return cls([[None] * num_cols for _ in range(num_rows)])

    @property
    def num_rows(self) -> int:
        return len(self.seats)

    @property
    def num_cols(self) -> int:
        return len(self.seats[0]) if self.seats else 0

    def occupied(self) -> Dict[GridCell, str]:
        out: Dict[GridCell, str] = {}
        for r, row in enumerate(self.seats):
            for c, name in enumerate(row):
                if name is not None:
                    out[GridCell(r, c)] = name
        return out

    def position_of(self, name: str) -> Optional[GridCell]:
        for cell, occupant in self.occupied().items():
            if occupant == name:
                return cell
        return None

    def as_rows(self) -> List[List[Optional[str]]]:
        return [list(row) for row in self.seats]


@dataclass
class GroupPlan:
    groups: List[List[str]]
    capacity: int

    @classmethod
    def empty(cls, num_groups: int, capacity: int) -> "GroupPlan":
        return cls([[] for _ in range(num_groups)], capacity)

    def group_of(self, name: str) -> Optional[Group]:
        for idx, members in enumerate(self.groups):
            if name in members:
                return Group(idx)
        return None

    def as_lists(self) -> List[List[str]]:
        return [list(members) for members in self.groups]


Plan = Union[GridPlan, GroupPlan]


# ---------------- results ----------------

class SolveStatus(str, Enum):
    SUCCESS = "success"
    INFEASIBLE = "infeasible"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    NO_SOLUTION = "no_solution"
    ERROR = "error"


DEFAULT_MESSAGES: Dict[SolveStatus, str] = {
    SolveStatus.SUCCESS: "",
    SolveStatus.INFEASIBLE: "Cannot generate a seating plan.",
    SolveStatus.TIMEOUT: "Time limit reached before a solution was found.",
    SolveStatus.ABORTED: "Stopped.",
    SolveStatus.NO_SOLUTION: "No arrangement satisfies the constraints; relax them or add seats.",
    SolveStatus.ERROR: "Unexpected solver error.",
}


@dataclass
class SolveResult:
    status: SolveStatus
    message: str = ""
    plan: Optional[Plan] = None
    seed: Optional[int] = None
    elapsed: float = 0.0
    steps: int = 0

    def __post_init__(self):
        if not self.message:
            self.message = DEFAULT_MESSAGES.get(self.status, "")

    @property
    def ok(self) -> bool:
        return self.status is SolveStatus.SUCCESS

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ok": self.ok,
            "seed": self.seed,
            "elapsed": round(float(self.elapsed), 6),
            "steps": int(self.steps),
        }
        if not self.ok:
            out["reason"] = self.status.value
            out["message"] = self.message
            return out
        if isinstance(self.plan, GroupPlan):
            out.update({
                "groups": self.plan.as_lists(),
                "numGroups": len(self.plan.groups),
                "capacity": self.plan.capacity,
            })
        elif isinstance(self.plan, GridPlan):
            out.update({
                "plan": self.plan.as_rows(),
                "numRows": self.plan.num_rows,
                "numCols": self.plan.num_cols,
            })
        return out

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SolveResult":
        plan: Optional[Plan] = None
        if payload.get("ok"):
            status = SolveStatus.SUCCESS
            if "groups" in payload:
                plan = GroupPlan([list(g) for g in payload["groups"]], int(payload.get("capacity") or 0))
            elif "plan" in payload:
                plan = GridPlan([list(row) for row in payload["plan"]])
        else:
            try:
                status = SolveStatus(payload.get("reason") or "error")
            except ValueError:
                status = SolveStatus.ERROR
        return cls(
            status=status,
            message=str(payload.get("message") or ""),
            plan=plan,
            seed=payload.get("seed"),
            elapsed=float(payload.get("elapsed") or 0.0),
            steps=int(payload.get("steps") or 0),
        )
