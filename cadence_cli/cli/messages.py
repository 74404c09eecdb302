"""Cadence messages command - Manage message bodies to dispatch."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cadence_cli.cli.common import json_mode, open_store, run_coverage
from cadence_cli.cli.error_handler import NotFoundError, ValidationError, handle_errors
from cadence_cli.cli.output import print_json, print_key_value, print_result, print_table, truncate

app = typer.Typer(help="Manage messages dispatched to recipients.")
console = Console()


def _read_body(body: Optional[str], body_file: Optional[Path]) -> Optional[str]:
    if body is not None and body_file is not None:
        raise ValidationError("Pass either a body argument or --body-file, not both")
    if body_file is not None:
        return body_file.read_text(encoding="utf-8")
    return body


@app.command("list")
@handle_errors
def list_messages(
    active_only: bool = typer.Option(
        False,
        "--active",
        "-a",
        help="Only show active messages.",
    ),
) -> None:
    """List messages, newest first.

    Example:
        cadence messages list
        cadence messages list --active
    """
    with open_store() as store:
        messages = store.list_messages()

    if active_only:
        messages = [m for m in messages if m.active]

    if json_mode():
        print_json([m.to_dict() for m in messages])
        return

    if not messages:
        console.print("[yellow]No messages yet.[/yellow] Add one with: cadence messages add")
        return

    rows = [
        {
            "id": m.id,
            "title": m.title,
            "body": truncate(m.body),
            "active": m.active,
            "created_at": m.created_at,
        }
        for m in messages
    ]
    print_table(
        rows,
        ["id", "title", "body", "active", "created_at"],
        title="Messages",
        column_styles={"id": "cyan", "title": "bold"},
    )


@app.command("show")
@handle_errors
def show_message(
    message_id: int = typer.Argument(..., help="Message ID."),
) -> None:
    """Show a message with its full body."""
    with open_store() as store:
        message = store.get_message(message_id)

    if message is None:
        raise NotFoundError(f"Message {message_id} not found")

    if json_mode():
        print_json(message.to_dict())
        return

    print_key_value(
        {
            "ID": message.id,
            "Title": message.title,
            "Active": message.active,
            "Created": message.created_at,
        },
        title="Message",
    )
    console.print()
    console.print(message.body, markup=False)


@app.command("add")
@handle_errors
def add_message(
    title: str = typer.Argument(..., help="Short title shown in listings."),
    body: Optional[str] = typer.Argument(
        None,
        help="Message body (HTML markup allowed).",
    ),
    body_file: Optional[Path] = typer.Option(
        None,
        "--body-file",
        "-f",
        help="Read the message body from a file.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    inactive: bool = typer.Option(
        False,
        "--inactive",
        help="Create the message without scheduling it.",
    ),
) -> None:
    """Add a message and schedule it for every active recipient.

    Example:
        cadence messages add "Weekly promo" "<b>50% off</b> this week"
        cadence messages add "Launch" --body-file launch.html
    """
    text = _read_body(body, body_file)
    if not text or not text.strip():
        raise ValidationError("Message body must not be empty")

    with open_store() as store:
        message = store.create_message(title.strip(), text, active=not inactive)
        scheduled = run_coverage(store) if message.active else []

    if json_mode():
        print_json({"message": message.to_dict(), "scheduled": len(scheduled)})
        return

    print_result(True, f"Added message {message.id}: {message.title}", {
        "active": message.active,
        "occurrences scheduled": len(scheduled),
    })


@app.command("update")
@handle_errors
def update_message(
    message_id: int = typer.Argument(..., help="Message ID."),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title."),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="New body."),
    body_file: Optional[Path] = typer.Option(
        None,
        "--body-file",
        "-f",
        help="Read the new body from a file.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Edit a message's title or body.

    Pending occurrences pick up the new body when they are delivered.
    """
    text = _read_body(body, body_file)
    changes = {}
    if title is not None:
        changes["title"] = title.strip()
    if text is not None:
        if not text.strip():
            raise ValidationError("Message body must not be empty")
        changes["body"] = text

    if not changes:
        raise ValidationError("Nothing to update: pass --title, --body or --body-file")

    with open_store() as store:
        message = store.update_message(message_id, **changes)

    if message is None:
        raise NotFoundError(f"Message {message_id} not found")

    if json_mode():
        print_json(message.to_dict())
        return
    print_result(True, f"Updated message {message.id}: {message.title}")


def _set_active(message_id: int, active: bool) -> None:
    with open_store() as store:
        message = store.update_message(message_id, active=active)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        scheduled = run_coverage(store) if active else []

    if json_mode():
        print_json({"message": message.to_dict(), "scheduled": len(scheduled)})
        return

    state = "Activated" if active else "Deactivated"
    details = {"occurrences scheduled": len(scheduled)} if active else None
    print_result(True, f"{state} message {message.id}: {message.title}", details)


@app.command("activate")
@handle_errors
def activate_message(
    message_id: int = typer.Argument(..., help="Message ID."),
) -> None:
    """Resume dispatching a message."""
    _set_active(message_id, True)


@app.command("deactivate")
@handle_errors
def deactivate_message(
    message_id: int = typer.Argument(..., help="Message ID."),
) -> None:
    """Stop dispatching a message.

    Pending occurrences are dropped when they fall due.
    """
    _set_active(message_id, False)


@app.command("delete")
@handle_errors
def delete_message(
    message_id: int = typer.Argument(..., help="Message ID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a message."""
    if not yes and not typer.confirm(f"Delete message {message_id}?", default=False):
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit()

    with open_store() as store:
        deleted = store.delete_message(message_id)

    if not deleted:
        raise NotFoundError(f"Message {message_id} not found")
    print_result(True, f"Deleted message {message_id}")
