"""Cadence command line entry point.

Registers the command groups and applies the global flags: logging
verbosity, ``--json`` output and an optional debug log file.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cadence_cli import __app_name__, __version__
from cadence_cli.cli import bot, config, logs, messages, recipients, run, schedule, settings
from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Cadence - jittered recurring message dispatch to Telegram groups.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

for group, name in (
    (messages, "messages"),
    (recipients, "recipients"),
    (settings, "settings"),
    (bot, "bot"),
    (schedule, "schedule"),
    (logs, "logs"),
    (run, "run"),
    (config, "config"),
):
    app.add_typer(group.app, name=name)

# Request URLs carry the bot token, and job runs are logged once per tick
LIBRARY_LOGGERS = ("httpx", "httpcore", "apscheduler")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


@dataclass
class CliOptions:
    """Global flags given before the subcommand."""

    verbose: bool = False
    debug: bool = False
    json: bool = False
    quiet: bool = False

    @property
    def console_level(self) -> int:
        if self.debug:
            return logging.DEBUG
        if self.verbose:
            return logging.INFO
        if self.quiet:
            return logging.ERROR
        return logging.WARNING


_options = CliOptions()


def quiet_library_loggers() -> None:
    """Keep third-party loggers at WARNING whatever the root level is."""
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _setup_logging(options: CliOptions, log_file: Optional[Path] = None) -> None:
    """Configure the root logger for one CLI invocation.

    The console handler follows the verbosity flags; a ``--log-file``
    always receives DEBUG records.
    """
    level = options.console_level
    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not options.quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=DEBUG_LOG_FORMAT if options.debug else LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    quiet_library_loggers()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print machine-readable JSON instead of tables.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write DEBUG logs to this file.",
    ),
) -> None:
    """Cadence - jittered recurring message dispatch to Telegram groups.

    [bold]Commands:[/bold]

    • [cyan]messages[/cyan] - Manage the messages to dispatch
    • [cyan]recipients[/cyan] - Manage the groups messages go to
    • [cyan]settings[/cyan] - Auto-send switch, interval and jitter, bot token
    • [cyan]bot[/cyan] - Check the Telegram bot connection
    • [cyan]schedule[/cyan] - Inspect upcoming deliveries
    • [cyan]logs[/cyan] - Activity log and delivery statistics
    • [cyan]run[/cyan] - Start the dispatch daemon
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        cadence messages add "Promo" "<b>50% off</b> today"
        cadence recipients add "Deals" -- -1001234567890
        cadence settings set interval_minutes 90
        cadence bot test
        cadence --json schedule list
        cadence run --daemon
    """
    if quiet and (verbose or debug):
        flag = "--verbose" if verbose else "--debug"
        console.print(f"[red]Error:[/red] --quiet and {flag} are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _options.verbose = verbose
    _options.debug = debug
    _options.json = json_output
    _options.quiet = quiet

    _setup_logging(_options, log_file)
    logging.getLogger(__name__).debug(f"{__app_name__} v{__version__} starting")


def is_json() -> bool:
    return _options.json


__all__ = ["app", "console", "is_json", "quiet_library_loggers"]
