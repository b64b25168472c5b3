"""qt-plan CLI: capture, parse and compare PostgreSQL query plans.

Usage: qt-plan <command> [options]
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-essential output.")
@click.version_option(__version__, prog_name="qt-plan")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """qt-plan: query-plan observability and regression testing."""
    import logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(message)s")
    elif quiet:
        logging.basicConfig(level=logging.WARNING)
    else:
        from pydantic import ValidationError

        from ..config import get_settings

        try:
            level = get_settings().log_level.upper()
        except ValidationError as e:
            raise click.ClickException(f"Invalid QT_PLAN_* settings: {e}") from e
        logging.basicConfig(level=level, format="%(message)s")


# --- Lazy command registration (keeps `qt-plan --help` fast) ---

def _register_commands() -> None:
    """Import and register all sub-commands."""
    from .cmd_run import run
    from .cmd_explain import explain
    from .cmd_parse import parse
    from .cmd_compare import compare

    main.add_command(run)
    main.add_command(explain)
    main.add_command(parse)
    main.add_command(compare)


_register_commands()
