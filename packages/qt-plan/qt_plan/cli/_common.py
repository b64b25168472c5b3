"""Shared CLI helpers: executor construction, plan file loading, Rich output."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ..exceptions import PlanHarnessError
from ..execution.base import PlanNode
from ..execution.plan_parser import PostgresPlanParser

console = Console()


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print(f"\n[bold cyan]{text}[/bold cyan]")


def build_executor(dsn: Optional[str], pool_size: int = 1):
    """Create a PostgreSQL executor from --dsn, or from QT_PLAN_* settings.

    Raises click.ClickException on invalid configuration.
    """
    from ..config import get_settings
    from ..execution.factory import create_executor_from_dsn

    settings = get_settings()
    try:
        if dsn:
            return create_executor_from_dsn(
                dsn,
                pool_size=max(pool_size, settings.pool_size),
                statement_timeout_ms=settings.statement_timeout_ms,
            )
        config = settings.postgres_config()
        config.pool_size = max(pool_size, config.pool_size)
        return config.get_executor()
    except PlanHarnessError as e:
        raise click.ClickException(str(e)) from e


def load_plan_file(path: Path) -> PlanNode:
    """Parse a saved plan: EXPLAIN (FORMAT JSON) output or psql text output.

    Raises click.ClickException if the file cannot be parsed.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise click.ClickException(f"{path}: not a UTF-8 text file ({e.reason})") from e
    parser = PostgresPlanParser()
    try:
        if text.lstrip().startswith(("[", "{")):
            return parser.parse_json(json.loads(text)).root
        return parser.parse_text(text).root
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{path}: invalid JSON plan: {e}") from e
    except PlanHarnessError as e:
        raise click.ClickException(f"{path}: {e.message}") from e
