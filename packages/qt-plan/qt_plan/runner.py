"""Scenario runner: drive captures, the state transition and comparisons.

Paired runs follow a one-shot barrier: every case is captured under
condition A, the transition (e.g. a statistics refresh) runs exactly once
for the whole batch, then every case is captured under condition B and
compared pairwise by label.

Usage:
    runner = ScenarioRunner(repository, "SELECT * FROM employee_simple WHERE department = ?",
                            [ScenarioCase("Sales", "Sales"), ScenarioCase("HR", "HR")])
    report = runner.run_before_after(lambda: repository.refresh_statistics(["employee_simple"]))
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from .comparator import compare_captures
from .exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    PlanParseError,
    QueryExecutionError,
)
from .execution.base import PlanCapture, ScenarioCase
from .execution.plan_parser import PostgresPlanParser
from .report import CaseOutcome, CaseStatus, ScenarioReport
from .repository import PlanRepository
from .template import QueryTemplate

logger = logging.getLogger(__name__)


@dataclass
class Condition:
    """Circumstances a plan is captured under."""

    name: str
    statistics_current: bool
    overrides: dict[str, str] = field(default_factory=dict)


BEFORE_REFRESH = Condition("before", statistics_current=False)
AFTER_REFRESH = Condition("after", statistics_current=True)


@dataclass
class _Attempt:
    case: ScenarioCase
    status: CaseStatus
    capture: Optional[PlanCapture] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    raw_text: Optional[str] = None


class ScenarioRunner:
    """Run a query template across an ordered list of cases.

    Args:
        repository: Plan repository used for every capture.
        template: Query template with exactly one placeholder.
        cases: Cases in the order they are processed and reported.
        parser: Plan parser (defaults to PostgresPlanParser).
        tolerance: Relative cost tolerance for 'materially changed'.
        full_tree: Include the positional structural diff in comparisons.
        max_workers: >1 captures cases concurrently. An executor exposing
            pool_size must hold at least that many connections.
        cancel_event: Set by the caller to stop at the next case boundary.
        name: Scenario name for the report.
    """

    def __init__(
        self,
        repository: PlanRepository,
        template: Union[str, QueryTemplate],
        cases: Iterable[ScenarioCase],
        parser: Optional[PostgresPlanParser] = None,
        tolerance: Optional[float] = None,
        full_tree: bool = False,
        max_workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
        name: str = "scenario",
    ):
        self.repository = repository
        self.template = template if isinstance(template, QueryTemplate) else QueryTemplate.parse(template)
        self.cases = list(cases)
        self.parser = parser or PostgresPlanParser()
        self.tolerance = tolerance
        self.full_tree = full_tree
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self.name = name

        pool_size = getattr(repository.executor, "pool_size", None)
        if pool_size is not None and self.max_workers > pool_size:
            raise ConfigurationError(
                f"max_workers={self.max_workers} exceeds the executor's pool_size={pool_size}; "
                f"each worker needs its own connection"
            )

        labels = [c.label for c in self.cases]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate case labels: {', '.join(duplicates)}")

    def cancel(self) -> None:
        """Request cancellation; in-flight captures are allowed to finish."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # ── Capture ─────────────────────────────────────────────────────────

    def _capture_case(self, case: ScenarioCase, condition: Condition) -> _Attempt:
        if self.cancelled:
            return _Attempt(case=case, status=CaseStatus.CANCELLED)

        try:
            raw = self.repository.capture(
                self.template,
                case,
                statistics_current=condition.statistics_current,
                overrides=condition.overrides,
            )
        except QueryExecutionError as e:
            logger.warning(f"[{case.label}] {condition.name} capture failed: {e}")
            return _Attempt(
                case=case, status=CaseStatus.FAILED, error=str(e), error_type=type(e).__name__
            )
        except DatabaseConnectionError:
            # Fatal: stop the other workers at their next case boundary
            self.cancel_event.set()
            raise

        try:
            capture = self.parser.parse(raw)
        except PlanParseError as e:
            logger.warning(f"[{case.label}] {condition.name} plan not parseable: {e}")
            return _Attempt(
                case=case,
                status=CaseStatus.FAILED,
                error=str(e),
                error_type=type(e).__name__,
                raw_text=e.raw_text or raw.raw_text(),
            )

        logger.info(f"  [{case.label}] {condition.name}: {capture.root.summary()}")
        return _Attempt(case=case, status=CaseStatus.OK, capture=capture)

    def _capture_all(self, cases: list[ScenarioCase], condition: Condition) -> list[_Attempt]:
        """Capture every case under one condition, results in input order."""
        logger.info(f"Capturing {len(cases)} cases ({condition.name})")
        if self.max_workers == 1 or len(cases) <= 1:
            return [self._capture_case(case, condition) for case in cases]

        # pool.map yields in submission order; leaving the block waits for all
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(lambda case: self._capture_case(case, condition), cases))

    # ── Modes ───────────────────────────────────────────────────────────

    def run_once(self, condition: Condition) -> ScenarioReport:
        """Capture one plan per case under a single condition."""
        attempts = self._capture_all(self.cases, condition)
        outcomes = [self._outcome(a, condition.name) for a in attempts]
        return ScenarioReport(
            name=self.name, mode="once", conditions=[condition.name], outcomes=outcomes
        )

    def run_paired(
        self,
        condition_a: Condition,
        condition_b: Condition,
        transition: Optional[Callable[[], None]] = None,
    ) -> ScenarioReport:
        """Capture under A, run transition once, capture under B, compare.

        Cases that fail under A are not captured again. If the run is
        cancelled before the transition, the transition does not run.
        """
        if condition_a.name == condition_b.name:
            raise ConfigurationError(f"Paired conditions need distinct names, got {condition_a.name!r}")

        first = self._capture_all(self.cases, condition_a)

        second: dict[str, _Attempt] = {}
        if not self.cancelled:
            if transition is not None:
                logger.info("Running state transition")
                transition()
            pending = [a.case for a in first if a.status is CaseStatus.OK]
            for attempt in self._capture_all(pending, condition_b):
                second[attempt.case.label] = attempt
        else:
            logger.warning("Run cancelled before the state transition; skipping it")

        outcomes = []
        for a in first:
            if a.status is not CaseStatus.OK:
                outcomes.append(self._outcome(a, condition_a.name))
                continue

            b = second.get(a.case.label)
            if b is None or b.status is CaseStatus.CANCELLED:
                outcomes.append(CaseOutcome(
                    case=a.case,
                    status=CaseStatus.CANCELLED,
                    captures={condition_a.name: a.capture},
                ))
            elif b.status is CaseStatus.FAILED:
                outcomes.append(CaseOutcome(
                    case=a.case,
                    status=CaseStatus.FAILED,
                    captures={condition_a.name: a.capture},
                    error=b.error,
                    error_type=b.error_type,
                    failed_condition=condition_b.name,
                    raw_text=b.raw_text,
                ))
            else:
                outcomes.append(CaseOutcome(
                    case=a.case,
                    status=CaseStatus.OK,
                    captures={condition_a.name: a.capture, condition_b.name: b.capture},
                    comparison=compare_captures(
                        a.capture, b.capture, tolerance=self.tolerance, full_tree=self.full_tree
                    ),
                ))

        return ScenarioReport(
            name=self.name,
            mode="paired",
            conditions=[condition_a.name, condition_b.name],
            outcomes=outcomes,
        )

    def run_before_after(
        self,
        transition: Callable[[], None],
        before: Condition = BEFORE_REFRESH,
        after: Condition = AFTER_REFRESH,
    ) -> ScenarioReport:
        """Paired run around a statistics refresh (or other transition)."""
        return self.run_paired(before, after, transition=transition)

    def run_forced(
        self,
        overrides: dict[str, str],
        statistics_current: bool = True,
    ) -> ScenarioReport:
        """Paired run comparing the natural plan with a forced planner mode."""
        return self.run_paired(
            Condition("natural", statistics_current=statistics_current),
            Condition("forced", statistics_current=statistics_current, overrides=dict(overrides)),
        )

    @staticmethod
    def _outcome(attempt: _Attempt, condition_name: str) -> CaseOutcome:
        if attempt.status is CaseStatus.OK:
            return CaseOutcome(
                case=attempt.case,
                status=CaseStatus.OK,
                captures={condition_name: attempt.capture},
            )
        return CaseOutcome(
            case=attempt.case,
            status=attempt.status,
            error=attempt.error,
            error_type=attempt.error_type,
            failed_condition=condition_name if attempt.status is CaseStatus.FAILED else None,
            raw_text=attempt.raw_text,
        )
