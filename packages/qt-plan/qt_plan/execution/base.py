"""Base dataclasses and protocols for execution plan handling."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional, Protocol, Sequence, Union


class DBExecutor(Protocol):
    """Protocol for database executors used by the plan repository."""

    def connect(self) -> None:
        """Open connection to database."""
        ...

    def close(self) -> None:
        """Close connection."""
        ...

    def explain(
        self,
        sql: str,
        params: tuple[Any, ...] = (),
        fmt: str = "json",
        analyze: bool = False,
        overrides: Optional[dict[str, str]] = None,
    ) -> Union[list[str], list[Any]]:
        """Run EXPLAIN with bound parameters and return the raw plan output."""
        ...

    def count_rows(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Return how many rows a bound query matches."""
        ...

    def refresh_statistics(self, tables: Optional[Sequence[str]] = None) -> None:
        """Recompute planner statistics and commit."""
        ...


class Operation(str, Enum):
    """Plan operation tag.

    OTHER is the tolerant fallback; the node's ``node_text`` holds the raw text.
    """

    SEQ_SCAN = "SeqScan"
    INDEX_SCAN = "IndexScan"
    INDEX_ONLY_SCAN = "IndexOnlyScan"
    BITMAP_HEAP_SCAN = "BitmapHeapScan"
    BITMAP_INDEX_SCAN = "BitmapIndexScan"
    NESTED_LOOP = "NestedLoop"
    HASH_JOIN = "HashJoin"
    MERGE_JOIN = "MergeJoin"
    OTHER = "Other"

    @property
    def is_scan(self) -> bool:
        return self in _SCAN_OPERATIONS


_SCAN_OPERATIONS = {
    Operation.SEQ_SCAN,
    Operation.INDEX_SCAN,
    Operation.INDEX_ONLY_SCAN,
    Operation.BITMAP_HEAP_SCAN,
    Operation.BITMAP_INDEX_SCAN,
}


@dataclass(frozen=True)
class PlanNode:
    """A node in the execution plan tree.

    Nodes are immutable once built; a tree is created fresh per capture.
    """

    operation: Operation
    """Normalized operation tag."""

    node_text: str
    """Raw operation text, e.g. 'Index Scan using idx_dept on employee_simple'."""

    startup_cost: float = 0.0
    """Estimated cost before the first row is returned."""

    total_cost: float = 0.0
    """Estimated total cost. Never less than startup_cost."""

    estimated_rows: int = 0
    estimated_width: int = 0

    relation_name: Optional[str] = None
    """Scanned table, if any."""

    index_name: Optional[str] = None
    """Index used, only for index-based operations."""

    actual_rows: Optional[int] = None
    """Actual rows per loop (EXPLAIN ANALYZE only)."""

    actual_time_ms: Optional[float] = None
    """Actual total time per loop in ms (EXPLAIN ANALYZE only)."""

    actual_loops: Optional[int] = None

    details: tuple[str, ...] = ()
    """Detail lines such as 'Filter: ...' or 'Index Cond: ...'."""

    children: tuple["PlanNode", ...] = ()

    def __post_init__(self) -> None:
        for name in ("startup_cost", "total_cost", "estimated_rows", "estimated_width"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.total_cost < self.startup_cost:
            raise ValueError(
                f"total_cost {self.total_cost} < startup_cost {self.startup_cost} "
                f"on {self.node_text!r}"
            )

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def was_executed(self) -> bool:
        return self.actual_rows is not None

    def walk(self) -> Iterator["PlanNode"]:
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def walk_with_paths(self, path: str = "0") -> Iterator[tuple[str, "PlanNode"]]:
        """Yield (path, node) pairs in pre-order. Child i of path p is 'p.i'."""
        yield path, self
        for i, child in enumerate(self.children):
            yield from child.walk_with_paths(f"{path}.{i}")

    def scan_nodes(self) -> list["PlanNode"]:
        return [n for n in self.walk() if n.operation.is_scan]

    def summary(self) -> str:
        """One-line summary: operation tag plus cost range."""
        tag = self.node_text if self.operation is Operation.OTHER else self.operation.value
        return (
            f"{tag} (cost={self.startup_cost:.2f}..{self.total_cost:.2f} "
            f"rows={self.estimated_rows})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "operation": self.operation.value,
            "node_text": self.node_text,
            "relation_name": self.relation_name,
            "index_name": self.index_name,
            "startup_cost": self.startup_cost,
            "total_cost": self.total_cost,
            "estimated_rows": self.estimated_rows,
            "estimated_width": self.estimated_width,
        }
        if self.was_executed:
            result["actual_rows"] = self.actual_rows
            result["actual_time_ms"] = self.actual_time_ms
            result["actual_loops"] = self.actual_loops
        if self.details:
            result["details"] = list(self.details)
        if self.children:
            result["children"] = [c.to_dict() for c in self.children]
        return result


@dataclass(frozen=True)
class ScenarioCase:
    """One parameter instance to capture a plan for, e.g. department = 'Sales'."""

    label: str
    parameter_value: Any
    expected_row_count: Optional[int] = None


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RawPlan:
    """Unparsed plan output as returned by the plan repository."""

    label: str
    parameter_value: Any
    format: str
    """'text' (list of plan lines) or 'json' (EXPLAIN FORMAT JSON document)."""

    payload: Any
    statistics_current: bool
    """Caller-supplied flag; never inferred from the database."""

    planner_overrides: dict[str, str] = field(default_factory=dict)
    matched_rows: Optional[int] = None
    captured_at: str = field(default_factory=_utcnow)

    def raw_text(self) -> str:
        """Best-effort text form of the payload, kept for diagnosis."""
        if self.format == "text":
            if isinstance(self.payload, str):
                return self.payload
            return "\n".join(str(line) for line in self.payload)
        return str(self.payload)


@dataclass
class PlanCapture:
    """A parsed plan for one case under one condition."""

    label: str
    parameter_value: Any
    root: PlanNode
    statistics_current: bool
    planner_overrides: dict[str, str] = field(default_factory=dict)
    matched_rows: Optional[int] = None
    planning_time_ms: Optional[float] = None
    execution_time_ms: Optional[float] = None
    raw: Optional[RawPlan] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "parameter_value": self.parameter_value,
            "statistics_current": self.statistics_current,
            "planner_overrides": dict(self.planner_overrides),
            "matched_rows": self.matched_rows,
            "planning_time_ms": self.planning_time_ms,
            "execution_time_ms": self.execution_time_ms,
            "plan": self.root.to_dict(),
        }
