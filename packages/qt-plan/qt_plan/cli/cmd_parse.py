"""qt-plan parse: parse a saved plan offline."""

from __future__ import annotations

import json
from pathlib import Path

import click


@click.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the parsed tree as JSON.")
def parse(plan_file: Path, as_json: bool) -> None:
    """Parse PLAN_FILE (EXPLAIN text or JSON output) and print it canonically."""
    from ..execution.plan_parser import format_plan_text
    from ._common import load_plan_file

    root = load_plan_file(plan_file)
    if as_json:
        click.echo(json.dumps(root.to_dict(), indent=2))
    else:
        click.echo(format_plan_text(root))
