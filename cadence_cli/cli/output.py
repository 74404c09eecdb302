"""Rendering helpers shared by the Cadence commands.

Records are shown as rich tables or aligned key/value listings, or as
JSON when the global ``--json`` flag is set.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.json import JSON as RichJSON
from rich.table import Table

console = Console()


def _cell(value: Any, missing: str = "") -> str:
    """Markup for a single value in a table or listing."""
    if value is None:
        return missing
    if isinstance(value, bool):
        return "[green]Yes[/green]" if value else "[red]No[/red]"
    if isinstance(value, datetime):
        return format_datetime(value)
    return str(value)


def print_json(data: Any, console_instance: Console | None = None) -> None:
    """Print ``data`` as indented JSON; datetimes and other objects are stringified.

    Lines are never wrapped, so the output stays parseable in narrow terminals.
    """
    out = console_instance or console
    out.print(RichJSON(json.dumps(data, indent=2, default=str)), soft_wrap=True)


def print_table(
    data: List[Dict[str, Any]],
    columns: List[str],
    title: str | None = None,
    column_styles: Dict[str, str] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print one row per record; ``columns`` picks and orders the keys.

    Example:
        print_table(
            [m.to_dict() for m in messages],
            ["id", "title", "active"],
            title="Messages",
        )
    """
    out = console_instance or console
    styles = column_styles or {}

    table = Table(title=title)
    for col in columns:
        table.add_column(col.replace("_", " ").title(), style=styles.get(col))
    for row in data:
        table.add_row(*(_cell(row.get(col)) for col in columns))

    out.print(table)


def print_result(
    success: bool,
    message: str,
    details: Dict[str, Any] | None = None,
    console_instance: Console | None = None,
) -> None:
    out = console_instance or console
    mark = "[green]✓[/green]" if success else "[red]✗[/red]"
    out.print(f"{mark} {message}")

    for key, value in (details or {}).items():
        if value is not None:
            out.print(f"  [dim]{key}:[/dim] {value}")


def print_key_value(
    data: Dict[str, Any],
    title: str | None = None,
    key_style: str = "cyan",
    console_instance: Console | None = None,
) -> None:
    """Print one record as ``key : value`` lines with the colons aligned."""
    out = console_instance or console

    if title:
        out.print(f"[bold]{title}[/bold]")
        out.print()

    width = max((len(str(k)) for k in data), default=0)
    for key, value in data.items():
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            rendered = f"[yellow]{value}[/yellow]"
        else:
            rendered = _cell(value, missing="[dim]N/A[/dim]")
        out.print(f"  [{key_style}]{str(key).ljust(width)}[/{key_style}] : {rendered}")


def format_datetime(value: Optional[datetime]) -> str:
    """Naive UTC timestamp as ``YYYY-MM-DD HH:MM:SS``."""
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_duration(seconds: float) -> str:
    """Compact duration: ``45s``, ``1m 30s``, ``1h 1m``."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def format_relative(value: Optional[datetime], now: datetime) -> str:
    """Describe a due time relative to ``now`` ("in 5m 0s", "overdue by 30s")."""
    if value is None:
        return "N/A"
    delta = (value - now).total_seconds()
    if delta >= 0:
        return f"in {format_duration(delta)}"
    return f"overdue by {format_duration(-delta)}"


def truncate(text: str, width: int = 40) -> str:
    """Collapse whitespace and shorten to ``width`` characters."""
    text = " ".join(text.split())
    if len(text) <= width:
        return text
    return text[: width - 1] + "…"
