"""Cadence bot command - Check the Telegram bot connection."""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console

from cadence_cli.cli.common import json_mode, open_store
from cadence_cli.cli.error_handler import handle_errors
from cadence_cli.cli.output import print_json, print_result
from cadence_cli.transport.exceptions import TransportError

app = typer.Typer(help="Check the Telegram bot connection.")
console = Console()
logger = logging.getLogger(__name__)


async def _connect(store) -> Optional[str]:
    """Initialize a transport with the current token and return the bot's username.

    Raises:
        TransportError: If the token is missing or the Bot API rejects it
    """
    from cadence_cli.config import get_config
    from cadence_cli.daemon.service import create_transport

    transport = create_transport(store, get_config())
    try:
        await transport.initialize()
        return transport.bot_username
    finally:
        await transport.close()


async def bot_online(store) -> bool:
    """Whether the bot answers ``getMe`` with the current token."""
    try:
        await _connect(store)
    except TransportError as e:
        logger.debug(f"Bot is offline: {e.message}")
        return False
    return True


@app.command("test")
@handle_errors
def test_bot() -> None:
    """Connect to the Bot API and show which bot the token belongs to.

    Example:
        cadence bot test
        cadence --json bot test
    """
    with open_store() as store:
        username = asyncio.run(_connect(store))

    if json_mode():
        print_json({"ready": True, "username": username})
        return

    print_result(True, f"Bot connected: @{username}")
