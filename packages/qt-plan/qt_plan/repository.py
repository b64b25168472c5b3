"""Plan repository: run a parameterized EXPLAIN for one scenario case."""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from .execution.base import DBExecutor, RawPlan, ScenarioCase
from .template import QueryTemplate

logger = logging.getLogger(__name__)


class PlanRepository:
    """Capture raw plans for (template, case) pairs through a DB executor.

    The case value only ever reaches the database as a bound parameter.

    Args:
        executor: Connected executor (see PostgresExecutor).
        explain_format: 'json' (structured) or 'text'.
        analyze: Use EXPLAIN ANALYZE, populating actual rows and timings.
        count_matches: Also count the rows the bound query matches.
        timeout_ms: Statement timeout per capture (None = executor default).
    """

    def __init__(
        self,
        executor: DBExecutor,
        explain_format: str = "json",
        analyze: bool = False,
        count_matches: bool = False,
        timeout_ms: Optional[int] = None,
    ):
        self.executor = executor
        self.explain_format = explain_format
        self.analyze = analyze
        self.count_matches = count_matches
        self.timeout_ms = timeout_ms

    def capture(
        self,
        template: Union[str, QueryTemplate],
        case: ScenarioCase,
        statistics_current: bool,
        overrides: Optional[dict[str, str]] = None,
    ) -> RawPlan:
        """Run the plan-producing statement for one case.

        Args:
            template: Query template with exactly one placeholder.
            case: Case whose parameter_value is bound into the template.
            statistics_current: Caller's statement about statistics freshness;
                recorded on the result, never inferred.
            overrides: Planner settings for this capture only.

        Raises:
            TemplateError: template does not have exactly one placeholder.
            QueryExecutionError: the database rejected the statement.
        """
        if not isinstance(template, QueryTemplate):
            template = QueryTemplate.parse(template)
        sql = template.driver_sql()
        params = (case.parameter_value,)
        overrides = {k: str(v) for k, v in (overrides or {}).items()}

        kwargs = {
            "fmt": self.explain_format,
            "analyze": self.analyze,
            "overrides": overrides,
        }
        if self.timeout_ms is not None:
            kwargs["timeout_ms"] = self.timeout_ms
        payload = self.executor.explain(sql, params, **kwargs)

        matched = None
        if self.count_matches:
            matched = self.executor.count_rows(sql, params)

        logger.debug(
            f"[{case.label}] captured {self.explain_format} plan "
            f"(statistics_current={statistics_current}, overrides={overrides or '-'})"
        )
        return RawPlan(
            label=case.label,
            parameter_value=case.parameter_value,
            format=self.explain_format,
            payload=payload,
            statistics_current=statistics_current,
            planner_overrides=overrides,
            matched_rows=matched,
        )

    def refresh_statistics(self, tables: Optional[Sequence[str]] = None) -> None:
        """Issue the statistics-refresh statement; returns once committed."""
        self.executor.refresh_statistics(tables)
