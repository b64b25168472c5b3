"""Parse PostgreSQL EXPLAIN output into PlanNode trees.

Supports both text output (one row per plan line, as psql shows it) and
EXPLAIN (FORMAT JSON). Planner wording is not a stable contract across
server versions, so parsing is tolerant: operation text outside the known
vocabulary becomes Operation.OTHER with the raw text kept on the node.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from ..exceptions import PlanParseError
from .base import Operation, PlanCapture, PlanNode, RawPlan


_NUM = r"\d+(?:\.\d+)?"

_COST_RE = re.compile(
    rf"\(cost=(?P<startup>{_NUM})\.\.(?P<total>{_NUM}) rows=(?P<rows>\d+) width=(?P<width>\d+)\)"
)
_ACTUAL_RE = re.compile(
    rf"\(actual(?: time=(?P<start>{_NUM})\.\.(?P<end>{_NUM}))? rows=(?P<rows>{_NUM}) loops=(?P<loops>\d+)\)"
)
_NEVER_EXECUTED_RE = re.compile(r"\(never executed\)")
_SUMMARY_RE = re.compile(rf"^(?P<key>Planning Time|Execution Time):\s*(?P<ms>{_NUM})\s*ms")

# psql decorations around the plan
_PSQL_NOISE_RE = re.compile(r"^(QUERY PLAN|-+|\(\d+ rows?\))$")

_JOIN_QUALIFIER = r"(?: (?:Left|Right|Full|Semi|Anti|Right Semi|Right Anti))?"

_OPERATION_PATTERNS: list[tuple[Operation, re.Pattern[str]]] = [
    (Operation.SEQ_SCAN, re.compile(r"^Seq Scan on (?P<relation>\S+)")),
    (Operation.INDEX_ONLY_SCAN,
     re.compile(r"^Index Only Scan(?: Backward)? using (?P<index>\S+) on (?P<relation>\S+)")),
    (Operation.INDEX_SCAN,
     re.compile(r"^Index Scan(?: Backward)? using (?P<index>\S+) on (?P<relation>\S+)")),
    (Operation.BITMAP_HEAP_SCAN, re.compile(r"^Bitmap Heap Scan on (?P<relation>\S+)")),
    (Operation.BITMAP_INDEX_SCAN, re.compile(r"^Bitmap Index Scan on (?P<index>\S+)")),
    (Operation.NESTED_LOOP, re.compile(rf"^Nested Loop(?:{_JOIN_QUALIFIER} Join)?$")),
    (Operation.HASH_JOIN, re.compile(rf"^Hash{_JOIN_QUALIFIER} Join$")),
    (Operation.MERGE_JOIN, re.compile(rf"^Merge{_JOIN_QUALIFIER} Join$")),
]

# JSON keys rendered as detail lines, in the order EXPLAIN prints them
_JSON_DETAIL_KEYS = (
    "Hash Cond",
    "Merge Cond",
    "Join Filter",
    "Recheck Cond",
    "Index Cond",
    "Filter",
    "Sort Key",
)


def classify_operation(node_text: str) -> tuple[Operation, Optional[str], Optional[str]]:
    """Match operation text against the fixed vocabulary.

    Returns (operation, relation_name, index_name). Unknown text is OTHER.
    """
    text = node_text.strip()
    if text.startswith("Parallel "):
        text = text[len("Parallel "):]
    for operation, pattern in _OPERATION_PATTERNS:
        m = pattern.match(text)
        if m:
            groups = m.groupdict()
            return operation, groups.get("relation"), groups.get("index")
    return Operation.OTHER, None, None


@dataclass
class ParsedPlan:
    """Root node plus the summary timings printed after the tree."""

    root: PlanNode
    planning_time_ms: Optional[float] = None
    execution_time_ms: Optional[float] = None


@dataclass
class _Draft:
    """Mutable node used while the tree is being assembled."""

    indent: int
    node_text: str
    startup_cost: float = 0.0
    total_cost: float = 0.0
    estimated_rows: int = 0
    estimated_width: int = 0
    actual_rows: Optional[int] = None
    actual_time_ms: Optional[float] = None
    actual_loops: Optional[int] = None
    details: list[str] = field(default_factory=list)
    children: list["_Draft"] = field(default_factory=list)

    def freeze(self, raw_text: str) -> PlanNode:
        operation, relation, index = classify_operation(self.node_text)
        children = tuple(child.freeze(raw_text) for child in self.children)
        try:
            return PlanNode(
                operation=operation,
                node_text=self.node_text,
                startup_cost=self.startup_cost,
                total_cost=self.total_cost,
                estimated_rows=self.estimated_rows,
                estimated_width=self.estimated_width,
                relation_name=relation,
                index_name=index,
                actual_rows=self.actual_rows,
                actual_time_ms=self.actual_time_ms,
                actual_loops=self.actual_loops,
                details=tuple(self.details),
                children=children,
            )
        except ValueError as e:
            raise PlanParseError(f"Invalid plan node: {e}", raw_text=raw_text) from e


class PostgresPlanParser:
    """Turn raw PostgreSQL plan output into PlanNode trees.

    Text rules:
    - the first non-empty line is the root node
    - a line starting with '->' is a child of the nearest preceding node
      indented less than it
    - other indented lines are detail lines of the current node
    - unindented lines after the root are summary lines (Planning Time, ...)
    """

    def parse(self, raw: RawPlan) -> PlanCapture:
        """Parse a repository capture into a PlanCapture."""
        if raw.format == "json":
            parsed = self.parse_json(raw.payload)
        elif raw.format == "text":
            parsed = self.parse_text(raw.payload)
        else:
            raise PlanParseError(f"Unknown plan format: {raw.format!r}", raw_text=raw.raw_text())

        return PlanCapture(
            label=raw.label,
            parameter_value=raw.parameter_value,
            root=parsed.root,
            statistics_current=raw.statistics_current,
            planner_overrides=dict(raw.planner_overrides),
            matched_rows=raw.matched_rows,
            planning_time_ms=parsed.planning_time_ms,
            execution_time_ms=parsed.execution_time_ms,
            raw=raw,
        )

    # ── Text format ─────────────────────────────────────────────────────

    def parse_text(self, lines: Union[str, Iterable[str]]) -> ParsedPlan:
        if isinstance(lines, str):
            lines = lines.splitlines()
        lines = [self._row_text(line) for line in lines]
        raw_text = "\n".join(lines)

        root: Optional[_Draft] = None
        root_indent = 0
        stack: list[_Draft] = []
        in_summary = False
        planning_ms: Optional[float] = None
        execution_ms: Optional[float] = None

        for line in lines:
            stripped = line.strip()
            if not stripped or _PSQL_NOISE_RE.match(stripped):
                continue
            indent = len(line) - len(line.lstrip())

            if root is None:
                root = self._parse_node_line(stripped, indent=-1)
                root_indent = indent
                stack = [root]
                continue

            # psql prefixes every row with one space; measure against the root
            if not in_summary and indent <= root_indent and not stripped.startswith("->"):
                in_summary = True
            if in_summary:
                m = _SUMMARY_RE.match(stripped)
                if m:
                    if m.group("key") == "Planning Time":
                        planning_ms = float(m.group("ms"))
                    else:
                        execution_ms = float(m.group("ms"))
                continue

            if stripped.startswith("->"):
                node = self._parse_node_line(stripped[2:].strip(), indent=indent)
                while len(stack) > 1 and stack[-1].indent >= indent:
                    stack.pop()
                stack[-1].children.append(node)
                stack.append(node)
            else:
                stack[-1].details.append(stripped)

        if root is None:
            raise PlanParseError("Plan output is empty", raw_text=raw_text)

        return ParsedPlan(
            root=root.freeze(raw_text),
            planning_time_ms=planning_ms,
            execution_time_ms=execution_ms,
        )

    @staticmethod
    def _row_text(row: Any) -> str:
        """Accept bare strings or driver rows ({'QUERY PLAN': ...} / 1-tuples)."""
        if isinstance(row, str):
            return row.rstrip()
        if isinstance(row, dict):
            value = row.get("QUERY PLAN", next(iter(row.values()), ""))
            return str(value).rstrip()
        if isinstance(row, (tuple, list)) and row:
            return str(row[0]).rstrip()
        return str(row).rstrip()

    def _parse_node_line(self, text: str, indent: int) -> _Draft:
        cost = _COST_RE.search(text)
        actual = _ACTUAL_RE.search(text)
        never = _NEVER_EXECUTED_RE.search(text)

        starts = [m.start() for m in (cost, actual, never) if m]
        node_text = text[: min(starts)].strip() if starts else text.strip()

        draft = _Draft(indent=indent, node_text=node_text)
        if cost:
            draft.startup_cost = float(cost.group("startup"))
            draft.total_cost = float(cost.group("total"))
            draft.estimated_rows = int(cost.group("rows"))
            draft.estimated_width = int(cost.group("width"))
        if actual:
            # Newer servers print fractional per-loop row counts
            draft.actual_rows = int(float(actual.group("rows")))
            draft.actual_loops = int(actual.group("loops"))
            if actual.group("end") is not None:
                draft.actual_time_ms = float(actual.group("end"))
        elif never:
            draft.actual_rows = 0
            draft.actual_loops = 0
        return draft

    # ── JSON format ─────────────────────────────────────────────────────

    def parse_json(self, document: Any) -> ParsedPlan:
        raw_text = document if isinstance(document, str) else json.dumps(document, default=str)
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                raise PlanParseError(f"Plan JSON is not valid: {e}", raw_text=raw_text) from e

        # EXPLAIN (FORMAT JSON) returns a one-element list
        if isinstance(document, list):
            document = document[0] if document else None
        if not isinstance(document, dict) or not isinstance(document.get("Plan"), dict):
            raise PlanParseError("Plan JSON has no 'Plan' object", raw_text=raw_text)

        root = self._parse_json_node(document["Plan"], raw_text)
        return ParsedPlan(
            root=root.freeze(raw_text),
            planning_time_ms=document.get("Planning Time"),
            execution_time_ms=document.get("Execution Time"),
        )

    def _parse_json_node(self, plan: dict[str, Any], raw_text: str) -> _Draft:
        if "Node Type" not in plan:
            raise PlanParseError("Plan node has no 'Node Type'", raw_text=raw_text)

        draft = _Draft(
            indent=0,
            node_text=json_node_text(plan),
            startup_cost=float(plan.get("Startup Cost", 0.0)),
            total_cost=float(plan.get("Total Cost", 0.0)),
            estimated_rows=int(plan.get("Plan Rows", 0)),
            estimated_width=int(plan.get("Plan Width", 0)),
        )
        if "Actual Loops" in plan:
            draft.actual_loops = int(plan["Actual Loops"])
            draft.actual_rows = int(float(plan.get("Actual Rows", 0)))
            if draft.actual_loops > 0 and "Actual Total Time" in plan:
                draft.actual_time_ms = float(plan["Actual Total Time"])

        for key in _JSON_DETAIL_KEYS:
            value = plan.get(key)
            if value is None:
                continue
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            draft.details.append(f"{key}: {value}")

        for child in plan.get("Plans", []):
            draft.children.append(self._parse_json_node(child, raw_text))
        return draft


def json_node_text(plan: dict[str, Any]) -> str:
    """Rebuild the text-format operation line for a JSON plan node."""
    node_type = plan["Node Type"]
    text = node_type

    join_type = plan.get("Join Type")
    if join_type and join_type != "Inner":
        if node_type == "Nested Loop":
            text = f"Nested Loop {join_type} Join"
        elif node_type in ("Hash Join", "Merge Join"):
            text = node_type.replace(" Join", f" {join_type} Join")

    if plan.get("Parallel Aware"):
        text = f"Parallel {text}"
    if plan.get("Scan Direction") == "Backward" and node_type in ("Index Scan", "Index Only Scan"):
        text += " Backward"

    index = plan.get("Index Name")
    relation = plan.get("Relation Name")
    alias = plan.get("Alias")
    if node_type == "Bitmap Index Scan" and index:
        text += f" on {index}"
    else:
        if index:
            text += f" using {index}"
        if relation:
            text += f" on {relation}"
            if alias and alias != relation:
                text += f" {alias}"
    return text


# ── Canonical serialization ─────────────────────────────────────────────

def _fmt(value: float) -> str:
    text = f"{value:.2f}"
    if float(text) == value:
        return text
    return format(Decimal(repr(value)), "f")


def _annotation(node: PlanNode) -> str:
    text = (
        f"(cost={_fmt(node.startup_cost)}..{_fmt(node.total_cost)} "
        f"rows={node.estimated_rows} width={node.estimated_width})"
    )
    if node.actual_loops == 0:
        text += " (never executed)"
    elif node.actual_rows is not None:
        if node.actual_time_ms is not None:
            text += f" (actual time=0.000..{_fmt(node.actual_time_ms)}"
        else:
            text += " (actual"
        text += f" rows={node.actual_rows} loops={node.actual_loops or 1})"
    return text


def format_plan_text(root: PlanNode) -> str:
    """Serialize a tree back to EXPLAIN text layout.

    parse_text(format_plan_text(t)).root == t for every parsed tree t.
    """
    lines: list[str] = []
    _emit(root, 0, lines)
    return "\n".join(lines)


def _emit(node: PlanNode, depth: int, lines: list[str]) -> None:
    if depth == 0:
        lines.append(f"{node.node_text}  {_annotation(node)}")
        detail_col = 2
    else:
        arrow_col = 2 + 6 * (depth - 1)
        lines.append(f"{' ' * arrow_col}->  {node.node_text}  {_annotation(node)}")
        detail_col = arrow_col + 6
    for detail in node.details:
        lines.append(f"{' ' * detail_col}{detail}")
    for child in node.children:
        _emit(child, depth + 1, lines)


def parse_plan_text(text: Union[str, Iterable[str]]) -> PlanNode:
    """Convenience: parse text plan output and return the root node."""
    return PostgresPlanParser().parse_text(text).root


def parse_plan_json(document: Any) -> PlanNode:
    """Convenience: parse EXPLAIN (FORMAT JSON) output and return the root node."""
    return PostgresPlanParser().parse_json(document).root
