"""Cadence settings command - Runtime settings read by the scheduler.

Settings live in the record store, so a running daemon sees a change on
its next tick without a restart.
"""

import typer
from rich.console import Console

from cadence_cli.cli.common import json_mode, open_store
from cadence_cli.cli.error_handler import NotFoundError, ValidationError, handle_errors
from cadence_cli.cli.output import print_json, print_result, print_table
from cadence_cli.storage.base import (
    AUTO_SEND_ENABLED,
    BOT_TOKEN,
    DEFAULT_SETTINGS,
    INTERVAL_MINUTES,
    INTERVAL_VARIATION_MINUTES,
    MAX_INTERVAL_MINUTES,
    Setting,
)

app = typer.Typer(help="Manage runtime settings (auto-send, intervals, bot token).")
console = Console()

SECRET_SETTINGS = (BOT_TOKEN,)


def _mask(setting: Setting, unmask: bool = False) -> str:
    if setting.key not in SECRET_SETTINGS or unmask or not setting.value:
        return setting.value
    if len(setting.value) > 4:
        return setting.value[:4] + "****"
    return "****"


def normalize_setting(key: str, value: str) -> str:
    """Validate a setting value and return its stored form.

    Raises:
        ValidationError: For unknown keys or malformed values
    """
    value = value.strip()

    if key == AUTO_SEND_ENABLED:
        lowered = value.lower()
        if lowered in ("true", "on", "yes", "1"):
            return "true"
        if lowered in ("false", "off", "no", "0"):
            return "false"
        raise ValidationError(f"{key} must be true or false, got {value!r}")

    if key in (INTERVAL_MINUTES, INTERVAL_VARIATION_MINUTES):
        try:
            number = int(value)
        except ValueError:
            raise ValidationError(f"{key} must be an integer, got {value!r}")
        minimum = 1 if key == INTERVAL_MINUTES else 0
        if number < minimum:
            raise ValidationError(f"{key} must be at least {minimum}, got {number}")
        if number > MAX_INTERVAL_MINUTES:
            raise ValidationError(f"{key} must be at most {MAX_INTERVAL_MINUTES}, got {number}")
        return str(number)

    if key == BOT_TOKEN:
        return value

    raise ValidationError(
        f"Unknown setting: {key}",
        details={"known": ", ".join(DEFAULT_SETTINGS)},
    )


def _check_interval_total(store, key: str, value: str) -> None:
    """Refuse a base + variation sum past ``MAX_INTERVAL_MINUTES``."""
    other_key = INTERVAL_VARIATION_MINUTES if key == INTERVAL_MINUTES else INTERVAL_MINUTES
    other = store.get_setting(other_key)
    other_value = other.value.strip() if other is not None else DEFAULT_SETTINGS[other_key]
    if not other_value.isdigit():
        return
    total = int(value) + int(other_value)
    if total > MAX_INTERVAL_MINUTES:
        raise ValidationError(
            f"{INTERVAL_MINUTES} + {INTERVAL_VARIATION_MINUTES} must be at most "
            f"{MAX_INTERVAL_MINUTES} minutes, got {total}",
            details={other_key: other_value},
        )


def _warn_if_variation_exceeds_base(store) -> None:
    base = store.get_setting(INTERVAL_MINUTES)
    variation = store.get_setting(INTERVAL_VARIATION_MINUTES)
    if base is None or variation is None:
        return
    if not (base.value.isdigit() and variation.value.isdigit()):
        return
    if int(variation.value) > int(base.value):
        console.print(
            f"[yellow]Note: variation {variation.value} exceeds the base interval {base.value}; "
            "some deliveries will be due immediately.[/yellow]"
        )


@app.command("list")
@handle_errors
def list_settings(
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show the bot token in full.",
    ),
) -> None:
    """List all settings."""
    with open_store() as store:
        settings = store.list_settings()

    if json_mode():
        print_json([s.to_dict() | {"value": _mask(s, unmask)} for s in settings])
        return

    rows = [
        {"key": s.key, "value": _mask(s, unmask), "updated_at": s.updated_at}
        for s in settings
    ]
    print_table(rows, ["key", "value", "updated_at"], title="Settings",
                column_styles={"key": "cyan", "value": "green"})


@app.command("get")
@handle_errors
def get_setting(
    key: str = typer.Argument(..., help="Setting key."),
    unmask: bool = typer.Option(False, "--unmask", help="Show secrets in full."),
) -> None:
    """Print a single setting value."""
    with open_store() as store:
        setting = store.get_setting(key)

    if setting is None:
        raise NotFoundError(f"Setting {key} not found")

    if json_mode():
        print_json(setting.to_dict() | {"value": _mask(setting, unmask)})
        return
    console.print(_mask(setting, unmask), markup=False)


@app.command("set")
@handle_errors
def set_setting(
    key: str = typer.Argument(..., help="Setting key."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Change a setting.

    Example:
        cadence settings set auto_send_enabled false
        cadence settings set interval_minutes 90
        cadence settings set interval_variation_minutes 15
        cadence settings set bot_token 123456:ABC...
    """
    stored = normalize_setting(key, value)

    with open_store() as store:
        if key in (INTERVAL_MINUTES, INTERVAL_VARIATION_MINUTES):
            _check_interval_total(store, key, stored)
        setting = store.set_setting(key, stored)
        if key in (INTERVAL_MINUTES, INTERVAL_VARIATION_MINUTES):
            _warn_if_variation_exceeds_base(store)

    if json_mode():
        print_json(setting.to_dict() | {"value": _mask(setting)})
        return

    print_result(True, f"Set {key} = {_mask(setting)}")
    if key == AUTO_SEND_ENABLED and stored == "false":
        console.print("[dim]Due occurrences stay pending until auto-send is enabled again.[/dim]")
