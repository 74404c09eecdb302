"""Cadence recipients command - Manage delivery destinations."""

import asyncio
from typing import Optional

import typer
from rich.console import Console

from cadence_cli.cli.common import json_mode, open_store, run_coverage
from cadence_cli.cli.error_handler import (
    NotFoundError,
    ValidationError,
    handle_errors,
)
from cadence_cli.cli.output import print_json, print_key_value, print_result, print_table

app = typer.Typer(help="Manage recipients (Telegram groups) messages are sent to.")
console = Console()


async def _validate(store, destination: str) -> bool:
    from cadence_cli.activity import ActivityLog
    from cadence_cli.config import get_config
    from cadence_cli.daemon.service import create_transport
    from cadence_cli.scheduler import DispatchInvoker

    transport = create_transport(store, get_config())
    invoker = DispatchInvoker(transport, ActivityLog(store))
    try:
        return await invoker.validate_destination(destination)
    finally:
        await transport.close()


async def _chat_info(store, destination: str):
    from cadence_cli.config import get_config
    from cadence_cli.daemon.service import create_transport

    transport = create_transport(store, get_config())
    try:
        await transport.initialize()
        return await transport.get_chat_info(destination)
    finally:
        await transport.close()


@app.command("list")
@handle_errors
def list_recipients(
    active_only: bool = typer.Option(
        False,
        "--active",
        "-a",
        help="Only show active recipients.",
    ),
) -> None:
    """List recipients, newest first."""
    with open_store() as store:
        recipients = store.list_recipients()

    if active_only:
        recipients = [r for r in recipients if r.active]

    if json_mode():
        print_json([r.to_dict() for r in recipients])
        return

    if not recipients:
        console.print("[yellow]No recipients yet.[/yellow] Add one with: cadence recipients add")
        return

    print_table(
        [r.to_dict() | {"created_at": r.created_at} for r in recipients],
        ["id", "name", "destination", "active", "created_at"],
        title="Recipients",
        column_styles={"id": "cyan", "name": "bold", "destination": "magenta"},
    )


@app.command("add")
@handle_errors
def add_recipient(
    name: str = typer.Argument(..., help="Display name."),
    destination: str = typer.Argument(
        ...,
        help="Telegram chat id (e.g. -1001234567890) or @channel username.",
    ),
    skip_validation: bool = typer.Option(
        False,
        "--skip-validation",
        help="Do not check the destination with the Bot API.",
    ),
    inactive: bool = typer.Option(
        False,
        "--inactive",
        help="Create the recipient without scheduling anything for it.",
    ),
) -> None:
    """Add a recipient and schedule every active message for it.

    The destination is checked with the Bot API first: it must be a
    group or supergroup the bot can see. Chat ids start with a dash,
    so put them after ``--``.

    Example:
        cadence recipients add "Deals chat" -- -1001234567890
        cadence recipients add --skip-validation "Test group" -- -100987
    """
    destination = destination.strip()
    if not destination:
        raise ValidationError("Destination must not be empty")

    with open_store() as store:
        if store.get_recipient_by_destination(destination) is not None:
            raise ValidationError(
                f"Destination {destination} is already registered",
                details={"destination": destination},
            )

        if not skip_validation:
            if not asyncio.run(_validate(store, destination)):
                raise ValidationError(
                    f"Destination {destination} is not a group the bot can reach",
                    details={"hint": "add the bot to the group, or pass --skip-validation"},
                )

        recipient = store.create_recipient(name.strip(), destination, active=not inactive)
        scheduled = run_coverage(store) if recipient.active else []

    if json_mode():
        print_json({"recipient": recipient.to_dict(), "scheduled": len(scheduled)})
        return

    print_result(True, f"Added recipient {recipient.id}: {recipient.name}", {
        "destination": recipient.destination,
        "active": recipient.active,
        "occurrences scheduled": len(scheduled),
    })


@app.command("info")
@handle_errors
def recipient_info(
    recipient_id: int = typer.Argument(..., help="Recipient ID."),
) -> None:
    """Show live chat details for a recipient from the Bot API."""
    with open_store() as store:
        recipient = store.get_recipient(recipient_id)
        if recipient is None:
            raise NotFoundError(f"Recipient {recipient_id} not found")
        info = asyncio.run(_chat_info(store, recipient.destination))

    if json_mode():
        print_json({"recipient": recipient.to_dict(), "chat": info.to_dict()})
        return

    if not info.can_send_messages:
        console.print("[yellow]Warning: the bot may not be allowed to post in this chat[/yellow]")

    print_key_value(
        {
            "Recipient": f"{recipient.id} ({recipient.name})",
            "Chat ID": info.id,
            "Title": info.title,
            "Type": info.type,
            "Members": info.member_count,
            "Can post": info.can_send_messages,
            "Description": info.description,
        },
        title="Chat info",
    )


@app.command("update")
@handle_errors
def update_recipient(
    recipient_id: int = typer.Argument(..., help="Recipient ID."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New display name."),
    destination: Optional[str] = typer.Option(
        None,
        "--destination",
        "-d",
        help="New chat id or @channel username.",
    ),
    skip_validation: bool = typer.Option(
        False,
        "--skip-validation",
        help="Do not check a new destination with the Bot API.",
    ),
) -> None:
    """Rename a recipient or move it to another chat.

    A changed destination is checked with the Bot API like on ``add``.
    Pending deliveries keep their due times and go to the new chat.

    Example:
        cadence recipients update 3 --name "Deals (EU)"
        cadence recipients update 3 --destination=-1009876543210
    """
    if name is None and destination is None:
        raise ValidationError("Nothing to update", details={"hint": "pass --name and/or --destination"})

    changes = {}
    if name is not None:
        changes["name"] = name.strip()

    with open_store() as store:
        recipient = store.get_recipient(recipient_id)
        if recipient is None:
            raise NotFoundError(f"Recipient {recipient_id} not found")

        if destination is not None and destination.strip() != recipient.destination:
            destination = destination.strip()
            if not destination:
                raise ValidationError("Destination must not be empty")
            if store.get_recipient_by_destination(destination) is not None:
                raise ValidationError(
                    f"Destination {destination} is already registered",
                    details={"destination": destination},
                )
            if not skip_validation and not asyncio.run(_validate(store, destination)):
                raise ValidationError(
                    f"Destination {destination} is not a group the bot can reach",
                    details={"hint": "add the bot to the group, or pass --skip-validation"},
                )
            changes["destination"] = destination

        if changes:
            recipient = store.update_recipient(recipient_id, **changes)

    if json_mode():
        print_json(recipient.to_dict())
        return

    print_result(True, f"Updated recipient {recipient.id}: {recipient.name}", {
        "destination": recipient.destination,
    })


def _set_active(recipient_id: int, active: bool) -> None:
    with open_store() as store:
        recipient = store.update_recipient(recipient_id, active=active)
        if recipient is None:
            raise NotFoundError(f"Recipient {recipient_id} not found")
        scheduled = run_coverage(store) if active else []

    if json_mode():
        print_json({"recipient": recipient.to_dict(), "scheduled": len(scheduled)})
        return

    state = "Activated" if active else "Deactivated"
    details = {"occurrences scheduled": len(scheduled)} if active else None
    print_result(True, f"{state} recipient {recipient.id}: {recipient.name}", details)


@app.command("activate")
@handle_errors
def activate_recipient(
    recipient_id: int = typer.Argument(..., help="Recipient ID."),
) -> None:
    """Resume dispatching to a recipient."""
    _set_active(recipient_id, True)


@app.command("deactivate")
@handle_errors
def deactivate_recipient(
    recipient_id: int = typer.Argument(..., help="Recipient ID."),
) -> None:
    """Stop dispatching to a recipient."""
    _set_active(recipient_id, False)


@app.command("delete")
@handle_errors
def delete_recipient(
    recipient_id: int = typer.Argument(..., help="Recipient ID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a recipient."""
    if not yes and not typer.confirm(f"Delete recipient {recipient_id}?", default=False):
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit()

    with open_store() as store:
        deleted = store.delete_recipient(recipient_id)

    if not deleted:
        raise NotFoundError(f"Recipient {recipient_id} not found")
    print_result(True, f"Deleted recipient {recipient_id}")
