"""qt-plan run: run a scenario file against PostgreSQL."""

from __future__ import annotations

from pathlib import Path

import click


@click.command()
@click.argument("scenario", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--dsn", default=None, help="PostgreSQL DSN (default: QT_PLAN_* settings).")
@click.option("--workers", type=int, default=None,
              help="Parallel captures (default: QT_PLAN_MAX_WORKERS).")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option("--sort", "sort_by", type=click.Choice(["input", "rows"]), default="input",
              show_default=True, help="Row order for display.")
@click.pass_context
def run(
    ctx: click.Context,
    scenario: Path,
    dsn: str,
    workers: int,
    as_json: bool,
    sort_by: str,
) -> None:
    """Capture plans for every case in SCENARIO and report the differences.

    Exits 1 when any case failed or was cancelled, or an expectation failed.
    """
    from ..config import get_settings
    from ..exceptions import PlanHarnessError
    from ..report import render_report
    from ..scenario import load_scenario, run_scenario
    from ._common import build_executor, console, print_header

    try:
        config = load_scenario(scenario)
    except PlanHarnessError as e:
        raise click.ClickException(str(e)) from e

    max_workers = workers if workers is not None else get_settings().max_workers
    if max_workers < 1:
        raise click.BadParameter("must be >= 1", param_hint="'--workers'")

    if not as_json and not ctx.obj.get("quiet"):
        print_header(f"Scenario {config.name} [{config.mode}, {len(config.cases)} cases]")

    executor = build_executor(dsn, pool_size=max_workers)
    try:
        with executor:
            report = run_scenario(config, executor, max_workers=max_workers)
    except PlanHarnessError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(report.to_json(sort_by=sort_by))
    else:
        render_report(report, console=console, sort_by=sort_by)

    if not report.ok:
        raise SystemExit(1)
