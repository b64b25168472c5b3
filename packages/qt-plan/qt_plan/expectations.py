"""Regression expectations over scenario reports.

An expectation names a case (or all cases), a condition, and the properties
its plan must have: root operation, total cost bounds, whether the scan
method changed, and whether the matched row count equals the case's
expected count.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from .exceptions import ConfigurationError
from .execution.base import Operation
from .report import CaseStatus, ScenarioReport


def parse_operation(value: str) -> Operation:
    """Accept 'SeqScan', 'SEQ_SCAN' or 'seq_scan'."""
    try:
        return Operation(value)
    except ValueError:
        pass
    try:
        return Operation[value.upper()]
    except KeyError:
        valid = ", ".join(op.value for op in Operation)
        raise ConfigurationError(f"Unknown operation {value!r}. Valid: {valid}") from None


def _optional_float(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def _flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return value


@dataclass
class Expectation:
    """Properties a case's plan must have."""

    label: Optional[str] = None
    """Case label; None applies to every case."""

    condition: Optional[str] = None
    """Condition name; None means the report's last condition."""

    operation: Optional[str] = None
    max_total_cost: Optional[float] = None
    min_total_cost: Optional[float] = None
    scan_method_changed: Optional[bool] = None
    match_expected_rows: bool = False

    def __post_init__(self) -> None:
        if self.operation is not None:
            self.operation = parse_operation(str(self.operation)).value
        self.max_total_cost = _optional_float("max_total_cost", self.max_total_cost)
        self.min_total_cost = _optional_float("min_total_cost", self.min_total_cost)
        if self.scan_method_changed is not None:
            self.scan_method_changed = _flag("scan_method_changed", self.scan_method_changed)
        self.match_expected_rows = _flag("match_expected_rows", self.match_expected_rows)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Expectation":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expectation must be a mapping, got {data!r}")
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown expectation keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    def describe(self) -> str:
        parts = [
            f"{k}={v}" for k, v in asdict(self).items()
            if v is not None and not (k == "match_expected_rows" and not v)
        ]
        return ", ".join(parts) or "case succeeds"


@dataclass
class ExpectationFailure:
    label: str
    expectation: Expectation
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "expectation": self.expectation.describe(),
            "message": self.message,
        }


def evaluate(report: ScenarioReport, expectations: Iterable[Expectation]) -> list[ExpectationFailure]:
    """Check expectations against a report.

    Cases that failed or were cancelled fail every expectation covering them.
    """
    failures: list[ExpectationFailure] = []
    for exp in expectations:
        outcomes = report.outcomes if exp.label is None else [
            o for o in report.outcomes if o.label == exp.label
        ]
        if exp.label is not None and not outcomes:
            failures.append(ExpectationFailure(exp.label, exp, "no such case in the report"))
            continue

        condition = exp.condition or report.conditions[-1]
        if condition not in report.conditions:
            raise ConfigurationError(
                f"Expectation refers to unknown condition {condition!r}; "
                f"run has {', '.join(report.conditions)}"
            )

        for outcome in outcomes:
            def fail(message: str) -> None:
                failures.append(ExpectationFailure(outcome.label, exp, message))

            capture = outcome.captures.get(condition)
            if capture is None:
                fail(f"no {condition} plan (case {outcome.status.value})")
                continue
            root = capture.root

            if exp.operation is not None and root.operation.value != exp.operation:
                fail(f"{condition} operation is {root.operation.value}, expected {exp.operation}")
            if exp.max_total_cost is not None and root.total_cost > exp.max_total_cost:
                fail(f"{condition} total cost {root.total_cost:.2f} > {exp.max_total_cost:.2f}")
            if exp.min_total_cost is not None and root.total_cost < exp.min_total_cost:
                fail(f"{condition} total cost {root.total_cost:.2f} < {exp.min_total_cost:.2f}")
            if exp.scan_method_changed is not None:
                if outcome.comparison is None:
                    fail(f"no comparison available (case {outcome.status.value})")
                elif outcome.comparison.scan_method_changed != exp.scan_method_changed:
                    fail(
                        f"scan_method_changed is {outcome.comparison.scan_method_changed}, "
                        f"expected {exp.scan_method_changed}"
                    )
            if exp.match_expected_rows:
                expected = outcome.case.expected_row_count
                matched = capture.matched_rows
                if expected is None:
                    fail("case has no expected_rows")
                elif matched != expected:
                    fail(f"matched {matched} rows, expected {expected}")

            if outcome.status is not CaseStatus.OK and not any(
                f.label == outcome.label and f.expectation is exp for f in failures
            ):
                fail(f"case {outcome.status.value}")
    return failures
