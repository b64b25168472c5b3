"""Scenario reports: one row per case, as data and as a rich table."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .comparator import ComparisonResult
from .execution.base import PlanCapture, ScenarioCase

if TYPE_CHECKING:
    from .expectations import ExpectationFailure


class CaseStatus(str, Enum):
    """Per-case outcome status."""

    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CaseOutcome:
    """Everything a run produced for one case."""

    case: ScenarioCase
    status: CaseStatus
    captures: dict[str, PlanCapture] = field(default_factory=dict)
    """Parsed plans keyed by condition name, in capture order."""

    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_condition: Optional[str] = None
    raw_text: Optional[str] = None
    """Raw plan output kept when parsing failed."""

    @property
    def label(self) -> str:
        return self.case.label

    @property
    def latest(self) -> Optional[PlanCapture]:
        """The capture from the last condition that succeeded."""
        if not self.captures:
            return None
        return list(self.captures.values())[-1]

    @property
    def matched_rows(self) -> Optional[int]:
        latest = self.latest
        return latest.matched_rows if latest else None


@dataclass
class ScenarioReport:
    """Result of a scenario run, in input case order."""

    name: str
    mode: str
    """'once' or 'paired'."""

    conditions: list[str]
    outcomes: list[CaseOutcome]
    expectation_failures: list["ExpectationFailure"] = field(default_factory=list)

    @property
    def failed(self) -> list[CaseOutcome]:
        return [o for o in self.outcomes if o.status is CaseStatus.FAILED]

    @property
    def cancelled(self) -> list[CaseOutcome]:
        return [o for o in self.outcomes if o.status is CaseStatus.CANCELLED]

    @property
    def ok(self) -> bool:
        """False whenever any case did not produce a full result."""
        return (
            all(o.status is CaseStatus.OK for o in self.outcomes)
            and not self.expectation_failures
        )

    def outcome(self, label: str) -> CaseOutcome:
        for o in self.outcomes:
            if o.label == label:
                return o
        raise KeyError(label)

    def rows(self, sort_by: str = "input") -> list[dict[str, Any]]:
        """Flatten outcomes into report rows.

        sort_by='rows' orders by descending matched (else estimated) row
        count, with unsuccessful cases last. Display only; the outcome list
        itself always stays in input order.
        """
        rows = [self._row(o) for o in self.outcomes]
        if sort_by == "rows":
            rows.sort(key=lambda r: (r["status"] != CaseStatus.OK.value, -(r["_sort_rows"] or 0)))
        elif sort_by != "input":
            raise ValueError(f"Unknown sort order: {sort_by!r}")
        for r in rows:
            r.pop("_sort_rows")
        return rows

    def _row(self, outcome: CaseOutcome) -> dict[str, Any]:
        expected = outcome.case.expected_row_count
        matched = outcome.matched_rows
        latest = outcome.latest
        row: dict[str, Any] = {
            "label": outcome.label,
            "parameter_value": outcome.case.parameter_value,
            "status": outcome.status.value,
            "matched_rows": matched,
            "expected_rows": expected,
            "rows_match": (matched == expected) if matched is not None and expected is not None else None,
            "plans": {name: cap.root.summary() for name, cap in outcome.captures.items()},
            "error": outcome.error,
            "_sort_rows": matched if matched is not None else (latest.root.estimated_rows if latest else None),
        }
        if outcome.failed_condition:
            row["failed_condition"] = outcome.failed_condition
        if self.mode == "paired":
            cmp = outcome.comparison
            row["scan_method_changed"] = cmp.scan_method_changed if cmp else None
            row["cost_delta"] = cmp.cost_delta if cmp else None
            row["row_estimate_delta"] = cmp.row_estimate_delta if cmp else None
            row["materially_changed"] = cmp.materially_changed if cmp else None
            if cmp and cmp.structural_diff:
                row["structural_diff"] = [m.to_dict() for m in cmp.structural_diff]
        return row

    def to_dict(self, sort_by: str = "input") -> dict[str, Any]:
        return {
            "name": self.name,
            "mode": self.mode,
            "conditions": list(self.conditions),
            "ok": self.ok,
            "summary": {
                "total": len(self.outcomes),
                "ok": sum(1 for o in self.outcomes if o.status is CaseStatus.OK),
                "failed": len(self.failed),
                "cancelled": len(self.cancelled),
                "expectation_failures": len(self.expectation_failures),
            },
            "cases": self.rows(sort_by=sort_by),
            "expectation_failures": [f.to_dict() for f in self.expectation_failures],
        }

    def to_json(self, sort_by: str = "input", indent: int = 2) -> str:
        return json.dumps(self.to_dict(sort_by=sort_by), indent=indent, default=str)


_STATUS_STYLE = {
    CaseStatus.OK.value: "green",
    CaseStatus.FAILED.value: "red",
    CaseStatus.CANCELLED.value: "yellow",
}


def _fmt_optional(value: Any) -> str:
    return "-" if value is None else str(value)


def render_report(
    report: ScenarioReport,
    console: Optional[Console] = None,
    sort_by: str = "input",
) -> None:
    """Print a report as a rich table followed by failures, if any."""
    console = console or Console()
    paired = report.mode == "paired"

    table = Table(title=f"Scenario: {report.name}", show_header=True, header_style="bold")
    table.add_column("Case", style="bold")
    table.add_column("Value")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    for name in report.conditions:
        table.add_column(f"Plan ({name})" if paired else "Plan")
    if paired:
        table.add_column("Scan changed", justify="center")
        table.add_column("Cost delta", justify="right")
        table.add_column("Row est. delta", justify="right")

    for row in report.rows(sort_by=sort_by):
        style = _STATUS_STYLE.get(row["status"], "white")
        rows_text = _fmt_optional(row["matched_rows"])
        if row["expected_rows"] is not None:
            rows_text += f" / {row['expected_rows']}"
        cells = [
            row["label"],
            str(row["parameter_value"]),
            f"[{style}]{row['status'].upper()}[/{style}]",
            rows_text,
        ]
        cells.extend(row["plans"].get(name, "-") for name in report.conditions)
        if paired:
            changed = row["scan_method_changed"]
            cells.append("-" if changed is None else ("yes" if changed else "no"))
            delta = row["cost_delta"]
            cells.append("-" if delta is None else f"{delta:+.2f}")
            cells.append("-" if row["row_estimate_delta"] is None else f"{row['row_estimate_delta']:+d}")
        table.add_row(*cells)

    console.print(table)

    for outcome in report.outcomes:
        if outcome.status is CaseStatus.FAILED:
            where = f" ({outcome.failed_condition})" if outcome.failed_condition else ""
            console.print(f"[red]{outcome.label}{where}:[/red] {outcome.error_type}: {escape(str(outcome.error))}")
    for failure in report.expectation_failures:
        console.print(f"[red]Expectation failed[/red] {escape(failure.label)}: {escape(failure.message)}")

    if report.ok:
        console.print(f"[bold green]All {len(report.outcomes)} cases passed.[/bold green]")
    else:
        console.print(
            f"[bold red]{len(report.failed)} failed, {len(report.cancelled)} cancelled, "
            f"{len(report.expectation_failures)} expectation failures.[/bold red]"
        )
