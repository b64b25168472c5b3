"""Plan capture against PostgreSQL and plan parsing.

The executor import is lazy so offline parsing and comparison work without
psycopg2 installed.
"""

from .base import (
    DBExecutor,
    Operation,
    PlanCapture,
    PlanNode,
    RawPlan,
    ScenarioCase,
)
from .factory import PostgresConfig, create_executor_from_dsn
from .plan_parser import (
    ParsedPlan,
    PostgresPlanParser,
    classify_operation,
    format_plan_text,
    parse_plan_json,
    parse_plan_text,
)


def __getattr__(name: str):
    """Lazy import for the concrete executor class."""
    if name == "PostgresExecutor":
        from .postgres_executor import PostgresExecutor
        return PostgresExecutor
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Executor (lazy)
    "PostgresExecutor",
    # Protocol
    "DBExecutor",
    # Models
    "Operation",
    "PlanCapture",
    "PlanNode",
    "RawPlan",
    "ScenarioCase",
    # Config / factory
    "PostgresConfig",
    "create_executor_from_dsn",
    # Parsing
    "ParsedPlan",
    "PostgresPlanParser",
    "classify_operation",
    "format_plan_text",
    "parse_plan_json",
    "parse_plan_text",
]
