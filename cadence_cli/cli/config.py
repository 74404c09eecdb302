"""Cadence config command - Configuration management."""

from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from cadence_cli.cli.error_handler import ValidationError, handle_errors

app = typer.Typer(help="Manage Cadence configuration.")
console = Console()


@app.command("show")
@handle_errors
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (scheduler, telegram, storage, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show unmasked secrets (use with caution).",
    ),
) -> None:
    """Show current configuration.

    Example:
        cadence config show
        cadence config show telegram
        cadence config show --format yaml
    """
    from cadence_cli.config import _config_to_dict, export_config_json, export_config_yaml, get_config

    config = get_config()

    if format == "yaml":
        yaml_output = export_config_yaml(config, mask_secrets=not unmask)
        console.print(Syntax(yaml_output, "yaml", theme="monokai"))
        return
    elif format == "json":
        json_output = export_config_json(config, mask_secrets=not unmask)
        console.print(Syntax(json_output, "json", theme="monokai"))
        return
    elif format != "table":
        raise ValidationError(f"Unknown format: {format}", details={"choices": "table, yaml, json"})

    data = _config_to_dict(config, mask_secrets=not unmask)
    sections = {
        name: data[name] for name in ("scheduler", "telegram", "storage", "logging")
    }
    sections["paths"] = {
        "config_dir": data["config_dir"],
        "data_dir": data["data_dir"],
        "database_url": data["database_url"],
    }

    if section and section not in sections:
        raise ValidationError(
            f"Unknown section: {section}",
            details={"choices": ", ".join(sections)},
        )

    console.print("[bold]Cadence Configuration[/bold]")
    console.print()

    for name in [section] if section else sections:
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in sections[name].items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)
        console.print()


@app.command("path")
def config_path() -> None:
    """Show configuration file path."""
    from cadence_cli.config import DEFAULT_CONFIG_FILE, get_config

    config = get_config()
    config_file_path = config.config_dir / DEFAULT_CONFIG_FILE
    console.print(f"[bold]Config directory:[/bold] {config.config_dir}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")


@app.command("init")
@handle_errors
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Prompt for the main settings.",
    ),
) -> None:
    """Initialize Cadence configuration.

    The bot token is never written to the file; set CADENCE_BOT_TOKEN or
    run ``cadence settings set bot_token ...``.

    Example:
        cadence config init
        cadence config init --no-interactive --force
    """
    from cadence_cli.config import (
        DEFAULT_CONFIG_FILE,
        STORAGE_BACKENDS,
        ensure_directories,
        load_config,
        save_config,
        clear_config_cache,
    )

    config = load_config()
    config_file = config.config_dir / DEFAULT_CONFIG_FILE

    if config_file.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_file}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=1)

    console.print("[bold]Initializing Cadence configuration...[/bold]")
    console.print()

    if interactive:
        console.print("[bold cyan]Scheduler[/bold cyan]")
        config.scheduler.tick_interval = typer.prompt(
            "  Tick interval (seconds)",
            default=config.scheduler.tick_interval,
            type=int,
        )
        config.scheduler.log_retention_days = typer.prompt(
            "  Keep activity log for (days)",
            default=config.scheduler.log_retention_days,
            type=int,
        )

        console.print()
        console.print("[bold cyan]Storage[/bold cyan]")
        backend = typer.prompt("  Backend", default=config.storage.backend)
        if backend not in STORAGE_BACKENDS:
            raise ValidationError(
                f"Unknown backend: {backend}",
                details={"choices": ", ".join(STORAGE_BACKENDS)},
            )
        config.storage.backend = backend

        console.print()
        console.print("[bold cyan]Logging[/bold cyan]")
        config.logging.level = typer.prompt("  Log level", default=config.logging.level).upper()

    ensure_directories(config)
    save_config(config, config_file)

    # Owner read/write only
    config_file.chmod(0o600)
    clear_config_cache()

    console.print()
    console.print(f"[green]✓[/green] Configuration initialized at {config_file}")
    if not config.telegram.bot_token:
        console.print(
            "[dim]Next: set a bot token with CADENCE_BOT_TOKEN or "
            "'cadence settings set bot_token <token>'[/dim]"
        )


@app.command("validate")
def validate_config() -> None:
    """Validate current configuration.

    Exits with code 1 if any error-level problem is found.
    """
    from cadence_cli.config import DEFAULT_CONFIG_FILE, get_config, validate_config as do_validate

    config = get_config()
    config_file = config.config_dir / DEFAULT_CONFIG_FILE

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    if config_file.exists():
        console.print(f"  [green]✓[/green] Config file found [dim]({config_file})[/dim]")
    else:
        console.print(f"  [yellow]![/yellow] No config file, using defaults [dim]({config_file})[/dim]")

    all_passed = True
    errors = do_validate(config)
    for error in errors:
        if error.severity == "error":
            status = "[red]✗[/red]"
            all_passed = False
        else:
            status = "[yellow]![/yellow]"
        console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=1)
