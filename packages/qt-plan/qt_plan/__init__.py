"""qt-plan: query-plan observability and regression testing for PostgreSQL.

Pipeline:
1. Capture:  bound EXPLAIN per scenario case (PlanRepository)
2. Parse:    text or JSON plan output -> PlanNode tree (PostgresPlanParser)
3. Compare:  before/after or natural/forced plans per case (comparator)
4. Check:    regression expectations (expectations)
5. Report:   rich table or JSON (report)

Usage:
    from qt_plan import PlanRepository, ScenarioCase, ScenarioRunner
    from qt_plan.execution import PostgresConfig

    with PostgresConfig.from_env().get_executor() as db:
        repo = PlanRepository(db, count_matches=True)
        runner = ScenarioRunner(
            repo,
            "SELECT * FROM employee_simple WHERE department = ?",
            [ScenarioCase("Sales", "Sales"), ScenarioCase("HR", "HR")],
        )
        report = runner.run_before_after(lambda: repo.refresh_statistics(["employee_simple"]))
"""

__version__ = "0.1.0"

from .comparator import ComparisonResult, OperationMismatch, compare_captures, compare_trees
from .exceptions import (
    ComparisonPreconditionError,
    ConfigurationError,
    DatabaseConnectionError,
    PlanHarnessError,
    PlanParseError,
    QueryExecutionError,
    TemplateError,
)
from .execution.base import Operation, PlanCapture, PlanNode, RawPlan, ScenarioCase
from .execution.plan_parser import PostgresPlanParser, format_plan_text, parse_plan_json, parse_plan_text
from .expectations import Expectation, ExpectationFailure, evaluate
from .report import CaseOutcome, CaseStatus, ScenarioReport, render_report
from .repository import PlanRepository
from .runner import AFTER_REFRESH, BEFORE_REFRESH, Condition, ScenarioRunner
from .template import QueryTemplate

__all__ = [
    "__version__",
    # Models
    "Operation",
    "PlanCapture",
    "PlanNode",
    "RawPlan",
    "ScenarioCase",
    "QueryTemplate",
    # Parsing
    "PostgresPlanParser",
    "format_plan_text",
    "parse_plan_json",
    "parse_plan_text",
    # Capture / run
    "PlanRepository",
    "ScenarioRunner",
    "Condition",
    "BEFORE_REFRESH",
    "AFTER_REFRESH",
    # Compare / check / report
    "ComparisonResult",
    "OperationMismatch",
    "compare_captures",
    "compare_trees",
    "Expectation",
    "ExpectationFailure",
    "evaluate",
    "CaseOutcome",
    "CaseStatus",
    "ScenarioReport",
    "render_report",
    # Errors
    "PlanHarnessError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "QueryExecutionError",
    "PlanParseError",
    "ComparisonPreconditionError",
    "TemplateError",
]
