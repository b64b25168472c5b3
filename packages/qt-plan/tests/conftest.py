"""Pytest configuration and fixtures for qt-plan tests."""

import threading
import time
from typing import Any, Callable, Optional

import pytest

from qt_plan.exceptions import DatabaseConnectionError, QueryExecutionError
from qt_plan.execution.base import ScenarioCase


DEPARTMENT_TEMPLATE = "SELECT * FROM employee_simple WHERE department = ?"
DEPARTMENTS = ["Sales", "Engineering", "HR", "Management"]

# Rows per department in the workshop table (10k rows, Sales dominant)
DEPARTMENT_ROWS = {"Sales": 9000, "Engineering": 600, "HR": 250, "Management": 150}


# =============================================================================
# SAMPLE PLAN TEXT
# =============================================================================

@pytest.fixture
def seq_scan_text() -> str:
    return (
        "Seq Scan on employee_simple  (cost=0.00..191.39 rows=9000 width=68)\n"
        "  Filter: ((department)::text = 'Sales'::text)"
    )


@pytest.fixture
def bitmap_scan_text() -> str:
    return (
        "Bitmap Heap Scan on employee_simple  (cost=4.18..12.64 rows=4 width=68)\n"
        "  Recheck Cond: ((department)::text = 'HR'::text)\n"
        "  ->  Bitmap Index Scan on idx_employee_department  (cost=0.00..4.18 rows=4 width=0)\n"
        "        Index Cond: ((department)::text = 'HR'::text)"
    )


@pytest.fixture
def join_plan_text() -> str:
    """Three-level plan with a join, an unknown operation and summary lines."""
    return "\n".join([
        "Sort  (cost=245.12..247.62 rows=1000 width=72)",
        "  Sort Key: e.salary DESC",
        "  ->  Hash Join  (cost=22.50..195.29 rows=1000 width=72)",
        "        Hash Cond: (e.dept_id = d.id)",
        "        ->  Seq Scan on employee e  (cost=0.00..155.00 rows=10000 width=40)",
        "        ->  Hash  (cost=15.00..15.00 rows=600 width=36)",
        "              ->  Index Scan using department_pkey on department d  (cost=0.28..15.00 rows=600 width=36)",
        "                    Index Cond: (id < 600)",
        "Planning Time: 0.215 ms",
        "Execution Time: 4.871 ms",
    ])


@pytest.fixture
def analyzed_plan_text() -> str:
    return "\n".join([
        "Nested Loop Left Join  (cost=0.57..16.61 rows=1 width=8) (actual time=0.021..0.023 rows=1 loops=1)",
        "  ->  Index Only Scan using t1_pkey on t1  (cost=0.29..8.30 rows=1 width=4) (actual time=0.010..0.011 rows=1 loops=1)",
        "        Index Cond: (id = 42)",
        "        Heap Fetches: 0",
        "  ->  Index Scan using t2_pkey on t2  (cost=0.29..8.30 rows=1 width=4) (never executed)",
        "        Index Cond: (id = t1.ref)",
        "Planning Time: 0.100 ms",
        "Execution Time: 0.050 ms",
    ])


# =============================================================================
# FAKE EXECUTOR
# =============================================================================

def _seq_scan(value: str, rows: int, total: float = 191.39) -> dict[str, Any]:
    return {
        "Node Type": "Seq Scan",
        "Relation Name": "employee_simple",
        "Alias": "employee_simple",
        "Startup Cost": 0.00,
        "Total Cost": total,
        "Plan Rows": rows,
        "Plan Width": 68,
        "Filter": f"((department)::text = '{value}'::text)",
    }


def _index_scan(value: str, rows: int, total: float) -> dict[str, Any]:
    return {
        "Node Type": "Index Scan",
        "Scan Direction": "Forward",
        "Index Name": "idx_employee_department",
        "Relation Name": "employee_simple",
        "Alias": "employee_simple",
        "Startup Cost": 0.29,
        "Total Cost": total,
        "Plan Rows": rows,
        "Plan Width": 68,
        "Index Cond": f"((department)::text = '{value}'::text)",
    }


def _bitmap_scan(value: str) -> dict[str, Any]:
    # Default estimate for a never-analyzed table
    return {
        "Node Type": "Bitmap Heap Scan",
        "Relation Name": "employee_simple",
        "Alias": "employee_simple",
        "Startup Cost": 4.18,
        "Total Cost": 12.64,
        "Plan Rows": 4,
        "Plan Width": 68,
        "Recheck Cond": f"((department)::text = '{value}'::text)",
        "Plans": [{
            "Node Type": "Bitmap Index Scan",
            "Parent Relationship": "Outer",
            "Index Name": "idx_employee_department",
            "Startup Cost": 0.00,
            "Total Cost": 4.18,
            "Plan Rows": 4,
            "Plan Width": 0,
            "Index Cond": f"((department)::text = '{value}'::text)",
        }],
    }


def _text_lines(plan: dict[str, Any], depth: int = 0) -> list[str]:
    """Render a JSON plan node the way psql prints EXPLAIN text rows."""
    from qt_plan.execution.plan_parser import json_node_text

    head = (
        f"{json_node_text(plan)}  (cost={plan['Startup Cost']:.2f}..{plan['Total Cost']:.2f} "
        f"rows={plan['Plan Rows']} width={plan['Plan Width']})"
    )
    if depth == 0:
        lines = [head]
        pad = "  "
    else:
        arrow = " " * (2 + 6 * (depth - 1))
        lines = [f"{arrow}->  {head}"]
        pad = arrow + "      "
    for key in ("Recheck Cond", "Index Cond", "Filter"):
        if key in plan:
            lines.append(f"{pad}{key}: {plan[key]}")
    for child in plan.get("Plans", []):
        lines.extend(_text_lines(child, depth + 1))
    return lines


class FakeExecutor:
    """In-memory stand-in for PostgresExecutor on the employee workshop table.

    Before the statistics refresh every department gets the default bitmap
    plan; after it Sales (90% of rows) gets a sequential scan and the rest an
    index scan. Disabling seq and bitmap scans forces Sales onto the index at
    a higher cost.

    Args:
        fail_on: parameter value -> exception raised by explain().
        garbage_on: parameter values whose plan output is unparseable.
        delays: parameter value -> seconds to sleep inside explain().
        on_explain: callback(value) invoked after every explain().
    """

    def __init__(
        self,
        fail_on: Optional[dict[str, Exception]] = None,
        garbage_on: Optional[set[str]] = None,
        delays: Optional[dict[str, float]] = None,
        on_explain: Optional[Callable[[str], None]] = None,
        analyzed: bool = False,
    ):
        self.fail_on = fail_on or {}
        self.garbage_on = garbage_on or set()
        self.delays = delays or {}
        self.on_explain = on_explain
        self.analyzed = analyzed
        self.connected = False
        self.explain_calls: list[dict[str, Any]] = []
        self.count_calls: list[tuple[str, tuple]] = []
        self.refresh_calls: list[Optional[list[str]]] = []
        self._lock = threading.Lock()

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def __enter__(self) -> "FakeExecutor":
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _plan(self, value: str, overrides: dict[str, str]) -> dict[str, Any]:
        rows = DEPARTMENT_ROWS.get(value, 1)
        if not self.analyzed:
            return _bitmap_scan(value)
        forced = overrides.get("enable_seqscan") == "off" and overrides.get("enable_bitmapscan") == "off"
        if rows > 5000:
            if forced:
                return _index_scan(value, rows, 311.49)
            return _seq_scan(value, rows)
        return _index_scan(value, rows, round(0.29 + rows * 0.05, 2))

    def explain(
        self,
        sql: str,
        params: tuple = (),
        fmt: str = "json",
        analyze: bool = False,
        overrides: Optional[dict[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        value = params[0] if params else None
        with self._lock:
            self.explain_calls.append({
                "sql": sql,
                "params": params,
                "fmt": fmt,
                "analyze": analyze,
                "overrides": dict(overrides or {}),
                "analyzed": self.analyzed,
            })
        if value in self.delays:
            time.sleep(self.delays[value])
        try:
            if value in self.fail_on:
                raise self.fail_on[value]
            if value in self.garbage_on:
                if fmt == "json":
                    return [{"Nope": {}}]
                return ["Seq Scan on employee_simple  (cost=50.00..10.00 rows=1 width=68)"]

            plan = self._plan(value, overrides or {})
            if fmt == "json":
                return [{"Plan": plan, "Planning Time": 0.08}]
            return _text_lines(plan) + ["Planning Time: 0.080 ms"]
        finally:
            if self.on_explain is not None:
                self.on_explain(value)

    def count_rows(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            self.count_calls.append((sql, params))
        return DEPARTMENT_ROWS.get(params[0], 0)

    def refresh_statistics(self, tables: Optional[list[str]] = None) -> None:
        self.refresh_calls.append(list(tables) if tables else None)
        self.analyzed = True


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def make_executor() -> Callable[..., FakeExecutor]:
    """Factory for fake executors with failure injection."""
    return FakeExecutor


@pytest.fixture
def department_cases() -> list[ScenarioCase]:
    return [
        ScenarioCase(label=d, parameter_value=d, expected_row_count=DEPARTMENT_ROWS[d])
        for d in DEPARTMENTS
    ]


@pytest.fixture
def query_error() -> QueryExecutionError:
    return QueryExecutionError('relation "employee_simple" does not exist', sqlstate="42P01")


@pytest.fixture
def connection_error() -> DatabaseConnectionError:
    return DatabaseConnectionError("server closed the connection unexpectedly", host="localhost:5432")
