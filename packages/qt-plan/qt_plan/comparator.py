"""Compare two plans captured for the same case under different conditions.

The comparator only reports what changed. Whether a change is an improvement
is a reporting policy, not decided here.

Usage:
    from qt_plan.comparator import compare_captures

    result = compare_captures(before, after, tolerance=0.05, full_tree=True)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import ComparisonPreconditionError
from .execution.base import Operation, PlanCapture, PlanNode


@dataclass(frozen=True)
class OperationMismatch:
    """An operation difference at one tree position.

    A missing side (None) means the node exists in only one plan.
    """

    path: str
    before: Optional[str]
    after: Optional[str]
    relation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "before": self.before,
            "after": self.after,
            "relation": self.relation,
        }


@dataclass
class ComparisonResult:
    """Differences between a before and an after plan for one case."""

    label: str
    scan_method_changed: bool
    """Root operation tag differs."""

    cost_delta: float
    """after.total_cost - before.total_cost."""

    row_estimate_delta: int
    """after.estimated_rows - before.estimated_rows at the root."""

    before_operation: Operation
    after_operation: Operation
    materially_changed: bool
    """abs(cost_delta) exceeds the relative tolerance (any change without one)."""

    structural_diff: list[OperationMismatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "scan_method_changed": self.scan_method_changed,
            "cost_delta": self.cost_delta,
            "row_estimate_delta": self.row_estimate_delta,
            "before_operation": self.before_operation.value,
            "after_operation": self.after_operation.value,
            "materially_changed": self.materially_changed,
            "structural_diff": [m.to_dict() for m in self.structural_diff],
        }


def _tag(node: PlanNode) -> str:
    if node.operation is Operation.OTHER:
        return node.node_text
    return node.operation.value


def diff_structure(before: PlanNode, after: PlanNode) -> list[OperationMismatch]:
    """Positional diff of operation tags over both trees.

    Nodes are paired by pre-order path ('0', '0.0', '0.1', ...). Paths
    present in only one tree are reported with the other side as None.
    """
    before_nodes = dict(before.walk_with_paths())
    after_nodes = dict(after.walk_with_paths())

    mismatches: list[OperationMismatch] = []
    for path in sorted(set(before_nodes) | set(after_nodes), key=_path_key):
        b_node = before_nodes.get(path)
        a_node = after_nodes.get(path)
        b_tag = _tag(b_node) if b_node else None
        a_tag = _tag(a_node) if a_node else None
        if b_tag == a_tag:
            continue
        relation = (
            (b_node.relation_name if b_node else None)
            or (a_node.relation_name if a_node else None)
            or ""
        )
        mismatches.append(OperationMismatch(path=path, before=b_tag, after=a_tag, relation=relation))
    return mismatches


def _path_key(path: str) -> tuple[int, ...]:
    return tuple(int(part) for part in path.split("."))


def is_material(before_cost: float, cost_delta: float, tolerance: Optional[float]) -> bool:
    """Whether a cost change exceeds a relative tolerance (e.g. 0.05 = 5%)."""
    if not tolerance:
        return cost_delta != 0
    return abs(cost_delta) > tolerance * abs(before_cost)


def compare_trees(
    before: PlanNode,
    after: PlanNode,
    label: str,
    tolerance: Optional[float] = None,
    full_tree: bool = False,
) -> ComparisonResult:
    """Compare two bare plan trees for the case named by label."""
    cost_delta = after.total_cost - before.total_cost
    return ComparisonResult(
        label=label,
        scan_method_changed=_tag(before) != _tag(after),
        cost_delta=cost_delta,
        row_estimate_delta=after.estimated_rows - before.estimated_rows,
        before_operation=before.operation,
        after_operation=after.operation,
        materially_changed=is_material(before.total_cost, cost_delta, tolerance),
        structural_diff=diff_structure(before, after) if full_tree else [],
    )


def compare_captures(
    before: PlanCapture,
    after: PlanCapture,
    tolerance: Optional[float] = None,
    full_tree: bool = False,
) -> ComparisonResult:
    """Compare two captures of the same case.

    Raises:
        ComparisonPreconditionError: if the captures belong to different cases.
    """
    if before.label != after.label:
        raise ComparisonPreconditionError(
            f"Cannot compare plans for different cases: {before.label!r} vs {after.label!r}"
        )
    return compare_trees(
        before.root, after.root, before.label, tolerance=tolerance, full_tree=full_tree
    )
