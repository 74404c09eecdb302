"""Daemon module for Cadence.

Runs the dispatch scheduler as a foreground or background service.
"""

from cadence_cli.daemon.pid import DaemonAlreadyRunningError, PIDFile
from cadence_cli.daemon.service import (
    CadenceDaemon,
    create_transport,
    daemonize,
    resolve_bot_token,
    run_daemon,
)

__all__ = [
    "CadenceDaemon",
    "DaemonAlreadyRunningError",
    "PIDFile",
    "create_transport",
    "daemonize",
    "resolve_bot_token",
    "run_daemon",
]
