"""qt-plan explain: capture one plan for a template and a value."""

from __future__ import annotations

import json

import click


def _parse_overrides(values: tuple) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected name=value, got {item!r}", param_hint="'--set'")
        overrides[name.strip()] = value.strip()
    return overrides


@click.command()
@click.argument("template")
@click.argument("value")
@click.option("--dsn", default=None, help="PostgreSQL DSN (default: QT_PLAN_* settings).")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default=None,
              help="EXPLAIN format (default: QT_PLAN_EXPLAIN_FORMAT).")
@click.option("--analyze", is_flag=True, help="Use EXPLAIN ANALYZE (executes the query).")
@click.option("--set", "settings", multiple=True, metavar="NAME=VALUE",
              help="Planner setting for this capture only (repeatable), e.g. enable_seqscan=off.")
@click.option("--count", is_flag=True, help="Also count the rows the query matches.")
@click.option("--json", "as_json", is_flag=True, help="Print the capture as JSON.")
def explain(
    template: str,
    value: str,
    dsn: str,
    fmt: str,
    analyze: bool,
    settings: tuple,
    count: bool,
    as_json: bool,
) -> None:
    """Show the plan PostgreSQL picks for TEMPLATE with VALUE bound.

    TEMPLATE must contain exactly one placeholder (?, %s or $1).
    """
    from ..config import get_settings
    from ..exceptions import PlanHarnessError
    from ..execution.base import ScenarioCase
    from ..execution.plan_parser import PostgresPlanParser, format_plan_text
    from ..repository import PlanRepository
    from ..template import QueryTemplate
    from ._common import build_executor, console

    overrides = _parse_overrides(settings)
    try:
        query = QueryTemplate.parse(template)
    except PlanHarnessError as e:
        raise click.BadParameter(e.message, param_hint="'TEMPLATE'") from e

    executor = build_executor(dsn)
    try:
        with executor:
            repository = PlanRepository(
                executor,
                explain_format=fmt or get_settings().explain_format,
                analyze=analyze,
                count_matches=count,
            )
            raw = repository.capture(
                query,
                ScenarioCase(label=value, parameter_value=value),
                statistics_current=True,
                overrides=overrides,
            )
        capture = PostgresPlanParser().parse(raw)
    except PlanHarnessError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps(capture.to_dict(), indent=2, default=str))
        return

    click.echo(format_plan_text(capture.root))
    if capture.planning_time_ms is not None:
        console.print(f"Planning Time: {capture.planning_time_ms:.3f} ms")
    if capture.execution_time_ms is not None:
        console.print(f"Execution Time: {capture.execution_time_ms:.3f} ms")
    if capture.matched_rows is not None:
        console.print(f"Matched rows: {capture.matched_rows}")
    if overrides:
        console.print(
            "Overrides: " + ", ".join(f"{k}={v}" for k, v in overrides.items())
        )
