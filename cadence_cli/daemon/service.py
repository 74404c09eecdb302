"""Main daemon service for Cadence.

This module provides the core daemon functionality including:
- Wiring of record store, activity log, transport and dispatch scheduler
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from cadence_cli.activity import ActivityLog
from cadence_cli.config import CadenceConfig
from cadence_cli.scheduler.dispatch import DispatchInvoker
from cadence_cli.scheduler.dispatch_scheduler import DispatchScheduler
from cadence_cli.storage import RecordStore, create_store
from cadence_cli.storage.base import BOT_TOKEN
from cadence_cli.transport.base import DeliveryTransport
from cadence_cli.transport.telegram import TelegramTransport

logger = logging.getLogger(__name__)


def resolve_bot_token(store: RecordStore, config: CadenceConfig) -> Optional[str]:
    """Bot token from the ``bot_token`` setting, falling back to config/env."""
    setting = store.get_setting(BOT_TOKEN)
    if setting is not None and setting.value.strip():
        return setting.value.strip()
    return config.telegram.bot_token or None


def create_transport(store: RecordStore, config: CadenceConfig) -> TelegramTransport:
    """Build the Telegram transport configured in ``config.telegram``."""
    return TelegramTransport(
        token_provider=lambda: resolve_bot_token(store, config),
        api_base=config.telegram.api_base,
        timeout=config.telegram.timeout,
        parse_mode=config.telegram.parse_mode or None,
    )


class CadenceDaemon:
    """Long-running Cadence service.

    Owns the dispatch scheduler and its collaborators and manages their
    lifecycle.

    Example:
        daemon = CadenceDaemon(config)
        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: CadenceConfig,
        store: Optional[RecordStore] = None,
        transport: Optional[DeliveryTransport] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Cadence configuration
            store: Record store (built from config if not provided)
            transport: Delivery transport (Telegram if not provided)
        """
        self._config = config
        self._store = store
        self._transport = transport
        self._activity: Optional[ActivityLog] = None
        self._invoker: Optional[DispatchInvoker] = None
        self._scheduler: Optional[DispatchScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the daemon services.

        Opens the store, initializes the transport and starts the
        dispatch scheduler. A transport that cannot initialize (for
        example, no bot token yet) is not fatal: each send retries
        initialization and records the failure.
        """
        logger.info("Starting Cadence daemon...")

        if self._store is None:
            self._store = create_store(self._config)
        if self._transport is None:
            self._transport = create_transport(self._store, self._config)

        self._activity = ActivityLog(self._store)
        self._invoker = DispatchInvoker(self._transport, self._activity)

        if await self._invoker.ensure_ready():
            logger.info("Delivery transport initialized")
        else:
            logger.warning("Delivery transport not ready; sends will retry initialization")

        self._scheduler = DispatchScheduler(
            self._store,
            self._invoker,
            self._activity,
            tick_interval=self._config.scheduler.tick_interval,
            misfire_grace_time=self._config.scheduler.misfire_grace_time,
            retention_days=self._config.scheduler.log_retention_days,
        )
        await self._scheduler.start()

        self._running = True
        logger.info("Cadence daemon started successfully")

    async def stop(self) -> None:
        """Stop the daemon services in reverse order of startup."""
        logger.info("Stopping Cadence daemon...")

        self._running = False

        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        if self._transport:
            try:
                await self._transport.close()
            except Exception as e:
                logger.warning(f"Error closing transport: {e}")

        if self._store:
            try:
                self._store.close()
            except Exception as e:
                logger.warning(f"Error closing store: {e}")

        logger.info("Cadence daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Optional[DispatchScheduler]:
        """The dispatch scheduler, or None if not started."""
        return self._scheduler

    @property
    def store(self) -> Optional[RecordStore]:
        return self._store


async def run_daemon(config: CadenceConfig) -> None:
    """Run the Cadence daemon until SIGTERM or SIGINT.

    Args:
        config: Cadence configuration
    """
    daemon = CadenceDaemon(config)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Fork into a background daemon process.

    Forks twice, starts a new session and redirects the standard file
    descriptors to ``log_file`` (or /dev/null).

    Note:
        Unix only. On Windows this returns without doing anything.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    os.setsid()

    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, "a+") as f:
            os.dup2(f.fileno(), sys.stdout.fileno())
            os.dup2(f.fileno(), sys.stderr.fileno())
    else:
        with open(os.devnull, "a+") as devnull:
            os.dup2(devnull.fileno(), sys.stdout.fileno())
            os.dup2(devnull.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
