"""Exception hierarchy for the plan harness."""

from __future__ import annotations

from typing import Any, Optional


class PlanHarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PlanHarnessError):
    """Invalid settings or scenario file."""


class DatabaseConnectionError(PlanHarnessError):
    """Cannot establish or keep a database connection. Fatal to a run."""

    def __init__(self, message: str, host: Optional[str] = None,
                 database: Optional[str] = None, **kwargs: Any):
        details = {k: v for k, v in {"host": host, "database": database, **kwargs}.items()
                   if v is not None}
        super().__init__(message, details)


class QueryExecutionError(PlanHarnessError):
    """A single plan-producing statement was rejected by the database."""

    def __init__(self, message: str, sqlstate: Optional[str] = None,
                 statement: Optional[str] = None):
        details: dict[str, Any] = {}
        if sqlstate:
            details["sqlstate"] = sqlstate
        super().__init__(message, details)
        self.sqlstate = sqlstate
        self.statement = statement


class PlanParseError(PlanHarnessError):
    """Raw plan output has no recognizable shape, or violates a node invariant."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class ComparisonPreconditionError(PlanHarnessError):
    """Two captures for different cases were handed to the comparator."""


class TemplateError(PlanHarnessError, ValueError):
    """Query template does not have exactly one substitution point."""
