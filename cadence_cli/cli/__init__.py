"""CLI command modules for Cadence.

This package contains the command groups registered on the ``cadence``
Typer app plus shared error handling and output helpers.
"""

from cadence_cli.cli.exit_codes import ExitCode
from cadence_cli.cli.error_handler import (
    CadenceError,
    ConfigurationError,
    DaemonError,
    DeliveryError,
    NotFoundError,
    StorageError,
    ValidationError,
    handle_errors,
)

__all__ = [
    "CadenceError",
    "ConfigurationError",
    "DaemonError",
    "DeliveryError",
    "ExitCode",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "handle_errors",
]
