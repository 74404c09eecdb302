"""Cadence schedule command - Inspect and refresh scheduled occurrences."""

import typer
from rich.console import Console

from cadence_cli.cli.common import json_mode, open_store, run_coverage
from cadence_cli.cli.output import (
    format_datetime,
    format_relative,
    print_json,
    print_result,
    print_table,
)
from cadence_cli.cli.error_handler import handle_errors
from cadence_cli.storage.base import utcnow

app = typer.Typer(help="Inspect scheduled deliveries.")
console = Console()


@app.command("list")
@handle_errors
def list_schedule(
    show_all: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Include completed occurrences.",
    ),
    limit: int = typer.Option(
        50,
        "--limit",
        "-n",
        help="Maximum rows to show.",
        min=1,
    ),
) -> None:
    """List scheduled occurrences by due time.

    Example:
        cadence schedule list
        cadence schedule list --all --limit 200
    """
    with open_store() as store:
        occurrences = store.list_occurrences()
        titles = {m.id: m.title for m in store.list_messages()}
        names = {r.id: r.name for r in store.list_recipients()}

    if not show_all:
        occurrences = [o for o in occurrences if not o.completed]
    occurrences = occurrences[:limit]

    if json_mode():
        print_json([o.to_dict() for o in occurrences])
        return

    if not occurrences:
        console.print("[yellow]Nothing scheduled.[/yellow]")
        return

    now = utcnow()
    rows = [
        {
            "id": o.id,
            "message": titles.get(o.message_id, f"#{o.message_id} (deleted)"),
            "recipient": names.get(o.recipient_id, f"#{o.recipient_id} (deleted)"),
            "due": format_datetime(o.due_time),
            "when": "-" if o.completed else format_relative(o.due_time, now),
            "completed": o.completed,
        }
        for o in occurrences
    ]
    print_table(
        rows,
        ["id", "message", "recipient", "due", "when", "completed"],
        title="Schedule (UTC)",
        column_styles={"id": "cyan", "when": "yellow"},
    )


@app.command("next")
@handle_errors
def next_scheduled() -> None:
    """Show when the next delivery is due."""
    with open_store() as store:
        next_time = store.next_due_time()

    if json_mode():
        print_json({"next_scheduled": next_time.isoformat() if next_time else None})
        return

    if next_time is None:
        console.print("[yellow]Nothing scheduled.[/yellow]")
        return
    console.print(
        f"Next delivery: [bold]{format_datetime(next_time)} UTC[/bold] "
        f"({format_relative(next_time, utcnow())})"
    )


@app.command("sync")
@handle_errors
def sync_schedule() -> None:
    """Run a coverage pass now.

    Schedules a delivery for every active message and recipient pair that
    has nothing pending, for example after a failed delivery.
    """
    with open_store() as store:
        created = run_coverage(store)

    if json_mode():
        print_json({"scheduled": [o.to_dict() for o in created]})
        return

    if not created:
        print_result(True, "Every active pair already has a pending delivery")
        return
    print_result(True, f"Scheduled {len(created)} new delivery(ies)")
