"""Global exception handling for the Cadence CLI.

Custom exception classes plus a decorator that turns any failure inside
a command into a readable message and a stable exit code.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from cadence_cli.cli.exit_codes import ExitCode
from cadence_cli.storage.base import DuplicateDestinationError
from cadence_cli.storage.base import StorageError as RecordStoreError
from cadence_cli.transport.exceptions import TransportError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class CadenceError(Exception):
    """Base exception for the Cadence CLI.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(CadenceError):
    """Invalid configuration file, environment or setting value."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class DeliveryError(CadenceError):
    """The delivery transport failed or rejected a request.

    Examples:
        - Bot token missing or revoked
        - Destination chat not found
    """

    exit_code = ExitCode.DELIVERY_ERROR


class DaemonError(CadenceError):
    """Daemon process could not be started, found or signalled."""

    exit_code = ExitCode.DAEMON_ERROR


class StorageError(CadenceError):
    """Record store failure."""

    exit_code = ExitCode.STORAGE_ERROR


class ValidationError(CadenceError):
    """User input failed validation.

    Examples:
        - Destination already registered
        - Destination is not a group chat
        - Interval setting that is not a positive integer
    """

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(CadenceError):
    """A message, recipient or occurrence id does not exist."""

    exit_code = ExitCode.NOT_FOUND


def _translate(error: Exception) -> CadenceError | None:
    """Map domain exceptions raised below the CLI onto CLI errors."""
    if isinstance(error, DuplicateDestinationError):
        details = {"recipient_id": error.record_id} if error.record_id is not None else None
        return ValidationError(error.message, details=details)
    if isinstance(error, RecordStoreError):
        return StorageError(str(error))
    if isinstance(error, TransportError):
        details = {"destination": error.destination} if error.destination else None
        return DeliveryError(error.message, details=details)
    return None


def _report(error: CadenceError) -> None:
    logger.error(
        f"{ExitCode.get_name(error.exit_code)}: {error.message}",
        extra={"exit_code": error.exit_code, "details": error.details},
    )
    console.print(f"[red]Error:[/red] {error.message}")
    for key, value in error.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - CadenceError subclasses and known domain errors: message plus exit code
    - KeyboardInterrupt: cancellation message, exit code 130
    - Anything else: generic message, exit code 1

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise NotFoundError("Message 3 not found")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CadenceError as e:
            _report(e)
            raise typer.Exit(code=e.exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            translated = _translate(e)
            if translated is not None:
                _report(translated)
                raise typer.Exit(code=translated.exit_code)

            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
