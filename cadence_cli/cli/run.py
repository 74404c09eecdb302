"""Cadence run command - Start the dispatch daemon."""

import asyncio
import atexit
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Start, inspect or stop the Cadence dispatch daemon.")
console = Console()


def _setup_daemon_logging(level: str, format_str: str, log_file: Optional[Path] = None) -> None:
    """Route daemon logging to stderr or, when detached, to the daemon log file."""
    from cadence_cli.main import quiet_library_loggers

    handlers: list[logging.Handler] = []
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=format_str,
        handlers=handlers,
        force=True,
    )
    quiet_library_loggers()


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Start the dispatch daemon.

    The daemon ticks every ``scheduler.tick_interval`` seconds, keeps a
    pending delivery for every active message and recipient pair, and
    sends deliveries as they fall due while ``auto_send_enabled`` is true.

    Example:
        cadence run
        cadence run --daemon
        cadence run --config ~/cadence.toml --verbose
    """
    if ctx.invoked_subcommand is not None:
        return

    from cadence_cli.config import ensure_directories, load_config, set_config, validate_config
    from cadence_cli.daemon.pid import PIDFile
    from cadence_cli.daemon.service import daemonize, run_daemon

    config = load_config(config_file)
    set_config(config)

    errors = [e for e in validate_config(config) if e.severity == "error"]
    if errors:
        for error in errors:
            console.print(f"[red]✗[/red] {error.field}: {error.message}")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    ensure_directories(config)

    pid_file = PIDFile(config.pid_file)
    running_pid = pid_file.get_pid()
    if running_pid is not None:
        console.print("[red]Error: Daemon is already running[/red]")
        console.print(f"[yellow]PID: {running_pid}[/yellow]")
        raise typer.Exit(code=ExitCode.DAEMON_ERROR)
    pid_file.clear_if_stale()

    console.print("[bold green]Starting Cadence daemon...[/bold green]")
    if verbose:
        console.print(f"Config: {config_file or 'default'}")
        console.print(f"Tick interval: {config.scheduler.tick_interval}s")
        console.print(f"Storage: {config.storage.backend} ({config.database_url})")
        console.print(f"Daemon mode: {daemon}")

    level = "DEBUG" if verbose else config.logging.level
    log_file = config.daemon_log_file if daemon else config.logging.file
    _setup_daemon_logging(level, config.logging.format, log_file)

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            console.print(f"[dim]Forking to background, logging to {config.daemon_log_file}[/dim]")
            daemonize(config.daemon_log_file)

    try:
        pid_file.create()
    except OSError as e:
        console.print(f"[red]Error: Failed to create PID file: {e}[/red]")
        raise typer.Exit(code=ExitCode.DAEMON_ERROR)

    atexit.register(pid_file.remove)

    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logging.exception("Daemon error")
        console.print(f"[red]Daemon error: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Check whether the daemon is running.

    Example:
        cadence run status
    """
    from cadence_cli.config import load_config
    from cadence_cli.daemon.pid import PIDFile
    from cadence_cli.database.connection import get_db_path

    config = load_config(config_file)
    pid_file = PIDFile(config.pid_file)

    pid = pid_file.get_pid()
    if pid is not None:
        console.print(f"[green]● Daemon is running[/green] (PID: {pid})")
        console.print(f"  Data directory: {config.data_dir}")
        db_path = get_db_path(config)
        if db_path is None:
            console.print(f"  Database: {config.database_url}")
        elif db_path.exists():
            console.print(f"  Database file: {db_path} ({db_path.stat().st_size // 1024} KiB)")
        else:
            console.print(f"  Database file: {db_path} [dim](not created yet)[/dim]")
        console.print(f"  Log file: {config.daemon_log_file}")
    else:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
def stop(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force kill the daemon (SIGKILL).",
    ),
    timeout: float = typer.Option(
        10.0,
        "--timeout",
        "-t",
        help="Seconds to wait for a graceful shutdown.",
        min=0,
    ),
) -> None:
    """Stop the daemon.

    Sends SIGTERM and waits for the daemon to finish its current tick.
    Use --force to send SIGKILL instead.

    Example:
        cadence run stop
        cadence run stop --force
    """
    from cadence_cli.config import load_config
    from cadence_cli.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile(config.pid_file)

    pid = pid_file.read()
    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Daemon is not running (stale PID file)[/yellow]")
        pid_file.remove()
        raise typer.Exit()

    try:
        stopped = pid_file.terminate(timeout=timeout, force=force)
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=ExitCode.DAEMON_ERROR)
    except OSError as e:
        console.print(f"[red]Error signaling daemon: {e}[/red]")
        raise typer.Exit(code=ExitCode.DAEMON_ERROR)

    if stopped:
        console.print(f"[green]Daemon stopped (PID: {pid})[/green]")
    else:
        console.print(f"[yellow]Shutdown signal sent to daemon (PID: {pid}), still shutting down...[/yellow]")
