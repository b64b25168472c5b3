"""qt-plan compare: compare two saved plans offline."""

from __future__ import annotations

import json
from pathlib import Path

import click


@click.command()
@click.argument("before", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("after", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--label", default="plan", show_default=True, help="Case label for the result.")
@click.option("--tolerance", type=float, default=None,
              help="Relative cost tolerance for 'materially changed' (e.g. 0.05).")
@click.option("--full-tree", is_flag=True, help="Include the per-node operation diff.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def compare(
    before: Path,
    after: Path,
    label: str,
    tolerance: float,
    full_tree: bool,
    as_json: bool,
) -> None:
    """Compare the plan in BEFORE with the plan in AFTER."""
    from rich.table import Table

    from ..comparator import compare_trees
    from ._common import console, load_plan_file

    if tolerance is not None and tolerance < 0:
        raise click.BadParameter("must be non-negative", param_hint="'--tolerance'")

    before_root = load_plan_file(before)
    after_root = load_plan_file(after)
    result = compare_trees(before_root, after_root, label, tolerance=tolerance, full_tree=full_tree)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    console.print(f"[bold]{label}[/bold]")
    console.print(f"  before: {before_root.summary()}")
    console.print(f"  after:  {after_root.summary()}")
    changed = "[yellow]yes[/yellow]" if result.scan_method_changed else "no"
    console.print(f"  scan method changed: {changed}")
    console.print(f"  cost delta: {result.cost_delta:+.2f}")
    console.print(f"  row estimate delta: {result.row_estimate_delta:+d}")
    console.print(f"  materially changed: {'yes' if result.materially_changed else 'no'}")

    if result.structural_diff:
        table = Table(title="Operation differences", show_header=True, header_style="bold")
        table.add_column("Path")
        table.add_column("Relation")
        table.add_column("Before")
        table.add_column("After")
        for m in result.structural_diff:
            table.add_row(m.path, m.relation or "-", m.before or "-", m.after or "-")
        console.print(table)
