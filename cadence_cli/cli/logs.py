"""Cadence logs command - Activity log and delivery statistics."""

import asyncio
from typing import Optional

import typer
from rich.console import Console

from cadence_cli.activity import ActivityLog
from cadence_cli.cli.bot import bot_online
from cadence_cli.cli.common import json_mode, open_store
from cadence_cli.cli.error_handler import ValidationError, handle_errors
from cadence_cli.cli.output import format_relative, print_json, print_key_value, print_result
from cadence_cli.storage.base import LogKind, cutoff_for_days, utcnow

app = typer.Typer(help="Show the activity log and delivery statistics.")
console = Console()

_KIND_STYLES = {
    LogKind.SUCCESS: "green",
    LogKind.ERROR: "red",
    LogKind.WARNING: "yellow",
    LogKind.INFO: "blue",
}


@app.command("list")
@handle_errors
def list_logs(
    limit: int = typer.Option(50, "--limit", "-n", help="Number of entries.", min=1),
    kind: Optional[str] = typer.Option(
        None,
        "--kind",
        "-k",
        help="Only show one kind (success, error, info, warning).",
    ),
) -> None:
    """Show recent activity, newest first.

    Example:
        cadence logs list
        cadence logs list --kind error -n 20
    """
    wanted: Optional[LogKind] = None
    if kind is not None:
        try:
            wanted = LogKind(kind.lower())
        except ValueError:
            raise ValidationError(
                f"Unknown log kind: {kind}",
                details={"choices": ", ".join(k.value for k in LogKind)},
            )

    with open_store() as store:
        entries = ActivityLog(store).recent(limit if wanted is None else limit * 10)

    if wanted is not None:
        entries = [e for e in entries if e.kind == wanted][:limit]

    if json_mode():
        print_json([e.to_dict() for e in entries])
        return

    if not entries:
        console.print("[yellow]No activity yet.[/yellow]")
        return

    for entry in entries:
        style = _KIND_STYLES[entry.kind]
        refs = ""
        if entry.message_id is not None or entry.recipient_id is not None:
            refs = f" [dim](message {entry.message_id}, recipient {entry.recipient_id})[/dim]"
        console.print(
            f"[dim]{entry.created_at:%Y-%m-%d %H:%M:%S}[/dim] "
            f"[{style}]{entry.kind.value:<7}[/{style}] "
            f"{entry.text}{refs}",
            highlight=False,
        )


@app.command("stats")
@handle_errors
def show_stats() -> None:
    """Show delivery statistics."""
    from cadence_cli.config import get_config
    from cadence_cli.daemon.pid import PIDFile

    config = get_config()
    with open_store(config) as store:
        stats = ActivityLog(store).stats()
        online = asyncio.run(bot_online(store))

    daemon_running = PIDFile(config.pid_file).is_running()

    if json_mode():
        print_json(stats.to_dict() | {"bot_online": online, "daemon_running": daemon_running})
        return

    print_key_value(
        {
            "Messages sent": stats.messages_sent,
            "Active recipients": stats.active_recipients,
            "Success rate": f"{stats.success_rate:.1f}%",
            "Next delivery": format_relative(stats.next_scheduled, utcnow()),
            "Bot online": online,
            "Daemon running": daemon_running,
        },
        title="Delivery statistics",
    )


@app.command("prune")
@handle_errors
def prune_logs(
    days: Optional[int] = typer.Option(
        None,
        "--days",
        "-d",
        help="Delete entries older than this many days (default: log_retention_days).",
        min=1,
    ),
) -> None:
    """Delete old activity entries and completed occurrences."""
    from cadence_cli.config import get_config

    config = get_config()
    days = days or config.scheduler.log_retention_days

    with open_store(config) as store:
        entries = ActivityLog(store).prune(days)
        occurrences = store.prune_completed_occurrences(cutoff_for_days(days))

    if json_mode():
        print_json({"days": days, "log_entries": entries, "occurrences": occurrences})
        return

    print_result(True, f"Pruned history older than {days} days", {
        "log entries": entries,
        "completed occurrences": occurrences,
    })
