"""Scenario files: declarative runs of a template across cases.

Example (YAML):

    name: department-selectivity
    template: SELECT * FROM employee_simple WHERE department = ?
    mode: before_after
    count_matches: true
    refresh_tables: [employee_simple]
    cases:
      - {label: Sales, value: Sales, expected_rows: 400}
      - {label: HR, value: HR}
    expectations:
      - {label: Sales, operation: SeqScan}
      - {scan_method_changed: true}
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import ConfigurationError, TemplateError
from .execution.base import DBExecutor, ScenarioCase
from .expectations import Expectation, evaluate
from .report import ScenarioReport
from .repository import PlanRepository
from .runner import AFTER_REFRESH, BEFORE_REFRESH, Condition, ScenarioRunner
from .template import QueryTemplate

logger = logging.getLogger(__name__)

MODES = ("once", "before_after", "paired")


@dataclass
class ScenarioConfig:
    """A parsed scenario file."""

    name: str
    template: QueryTemplate
    cases: list[ScenarioCase]
    mode: str = "once"
    conditions: list[Condition] = field(default_factory=list)
    explain_format: str = "json"
    analyze: bool = False
    count_matches: bool = False
    refresh: bool = False
    """Run the statistics refresh between conditions (always on for before_after)."""

    refresh_tables: Optional[list[str]] = None
    tolerance: Optional[float] = None
    full_tree: bool = False
    expectations: list[Expectation] = field(default_factory=list)


def _optional_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


def _parse_case(entry: Any, index: int) -> ScenarioCase:
    if not isinstance(entry, dict):
        # Bare values: label is the value itself
        return ScenarioCase(label=str(entry), parameter_value=entry)
    if "value" not in entry and "parameter_value" not in entry:
        raise ConfigurationError(f"Case #{index + 1} has no 'value'")
    value = entry.get("value", entry.get("parameter_value"))
    expected = entry.get("expected_rows", entry.get("expected_row_count"))
    return ScenarioCase(
        label=str(entry.get("label", value)),
        parameter_value=value,
        expected_row_count=_optional_int(f"Case #{index + 1} expected_rows", expected),
    )


def _parse_conditions(data: dict[str, Any], mode: str) -> list[Condition]:
    raw = data.get("conditions") or {}
    if not isinstance(raw, dict):
        raise ConfigurationError("'conditions' must be a mapping of name -> settings")

    conditions = [
        Condition(
            name=str(name),
            statistics_current=bool((entry or {}).get("statistics_current", True)),
            overrides={str(k): str(v) for k, v in ((entry or {}).get("overrides") or {}).items()},
        )
        for name, entry in raw.items()
    ]

    if mode == "once":
        if len(conditions) > 1:
            raise ConfigurationError("mode 'once' takes at most one condition")
        return conditions or [Condition("capture", statistics_current=True)]

    if mode == "before_after":
        by_name = {c.name: c for c in conditions}
        unknown = set(by_name) - {"before", "after"}
        if unknown:
            raise ConfigurationError(
                f"mode 'before_after' only takes 'before'/'after' conditions, got {sorted(unknown)}"
            )
        before = by_name.get("before", BEFORE_REFRESH)
        after = by_name.get("after", AFTER_REFRESH)
        # The refresh defines these flags
        return [
            Condition("before", statistics_current=False, overrides=before.overrides),
            Condition("after", statistics_current=True, overrides=after.overrides),
        ]

    if len(conditions) != 2:
        raise ConfigurationError("mode 'paired' needs exactly two conditions")
    return conditions


def parse_scenario(data: dict[str, Any], default_name: str = "scenario") -> ScenarioConfig:
    """Validate a scenario mapping.

    Raises:
        ConfigurationError: on any invalid field.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Scenario must be a mapping")

    mode = data.get("mode", "once")
    if mode not in MODES:
        raise ConfigurationError(f"Unknown mode {mode!r}. Valid: {', '.join(MODES)}")

    if not data.get("template"):
        raise ConfigurationError("Scenario has no 'template'")
    try:
        template = QueryTemplate.parse(str(data["template"]))
    except TemplateError as e:
        raise ConfigurationError(e.message, e.details) from e

    raw_cases = data.get("cases") or []
    if not isinstance(raw_cases, list) or not raw_cases:
        raise ConfigurationError("Scenario needs a non-empty 'cases' list")
    cases = [_parse_case(entry, i) for i, entry in enumerate(raw_cases)]

    explain_format = data.get("explain_format", "json")
    if explain_format not in ("json", "text"):
        raise ConfigurationError(f"explain_format must be 'json' or 'text', got {explain_format!r}")

    tolerance = data.get("tolerance")
    if tolerance is not None:
        try:
            tolerance = float(tolerance)
        except (TypeError, ValueError):
            raise ConfigurationError(f"tolerance must be a number, got {tolerance!r}") from None
        if tolerance < 0:
            raise ConfigurationError("tolerance must be non-negative")

    refresh_tables = data.get("refresh_tables")
    if refresh_tables is not None:
        if isinstance(refresh_tables, str):
            refresh_tables = [refresh_tables]
        refresh_tables = [str(t) for t in refresh_tables]

    expectations = [Expectation.from_dict(e) for e in data.get("expectations") or []]

    return ScenarioConfig(
        name=str(data.get("name", default_name)),
        template=template,
        cases=cases,
        mode=mode,
        conditions=_parse_conditions(data, mode),
        explain_format=explain_format,
        analyze=bool(data.get("analyze", False)),
        count_matches=bool(data.get("count_matches", False)),
        refresh=mode == "before_after" or bool(data.get("refresh", False)),
        refresh_tables=refresh_tables,
        tolerance=tolerance,
        full_tree=bool(data.get("full_tree", False)),
        expectations=expectations,
    )


def load_scenario(path: Path) -> ScenarioConfig:
    """Load a scenario from a .yaml/.yml or .json file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Scenario file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Cannot read scenario {path.name}: not UTF-8 text ({e.reason})") from e
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read scenario {path.name}: {e}") from e
    return parse_scenario(data, default_name=path.stem)


def run_scenario(
    config: ScenarioConfig,
    executor: DBExecutor,
    max_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
) -> ScenarioReport:
    """Run a scenario against a connected executor and evaluate its expectations."""
    repository = PlanRepository(
        executor,
        explain_format=config.explain_format,
        analyze=config.analyze,
        count_matches=config.count_matches,
    )
    runner = ScenarioRunner(
        repository,
        config.template,
        config.cases,
        tolerance=config.tolerance,
        full_tree=config.full_tree,
        max_workers=max_workers,
        cancel_event=cancel_event,
        name=config.name,
    )

    logger.info(f"Scenario {config.name}: {len(config.cases)} cases, mode={config.mode}")
    if config.mode == "once":
        report = runner.run_once(config.conditions[0])
    else:
        transition = None
        if config.refresh:
            def transition() -> None:
                repository.refresh_statistics(config.refresh_tables)
        report = runner.run_paired(config.conditions[0], config.conditions[1], transition=transition)

    report.expectation_failures = evaluate(report, config.expectations)
    return report
