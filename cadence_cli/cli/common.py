"""Helpers shared by the record-management commands."""

import logging
from contextlib import contextmanager
from typing import Iterator, List

from cadence_cli.activity import ActivityLog
from cadence_cli.cli.error_handler import ConfigurationError
from cadence_cli.config import CadenceConfig, ensure_directories, get_config
from cadence_cli.storage import RecordStore, create_store
from cadence_cli.storage.base import Occurrence

logger = logging.getLogger(__name__)


@contextmanager
def open_store(config: CadenceConfig | None = None) -> Iterator[RecordStore]:
    """Open the configured record store for the duration of a command.

    Raises:
        ConfigurationError: For the in-memory backend, whose records would
            vanish when the command exits
    """
    config = config or get_config()
    if config.storage.backend == "memory":
        raise ConfigurationError(
            "The memory storage backend only lives inside the daemon process",
            details={"hint": "unset CADENCE_STORAGE_BACKEND or set it to sqlite"},
        )
    if config.storage.backend == "sqlite":
        ensure_directories(config)

    store = create_store(config)
    try:
        yield store
    finally:
        store.close()


def build_engine(store: RecordStore, config: CadenceConfig | None = None):
    """Dispatch scheduler bound to ``store``, not started.

    Commands use it for on-demand coverage passes and status queries;
    the timer only ever runs inside the daemon.
    """
    from cadence_cli.daemon.service import create_transport
    from cadence_cli.scheduler import DispatchInvoker, DispatchScheduler

    config = config or get_config()
    activity = ActivityLog(store)
    invoker = DispatchInvoker(create_transport(store, config), activity)
    return DispatchScheduler(
        store,
        invoker,
        activity,
        tick_interval=config.scheduler.tick_interval,
        misfire_grace_time=config.scheduler.misfire_grace_time,
    )


def run_coverage(store: RecordStore, config: CadenceConfig | None = None) -> List[Occurrence]:
    """Run a coverage pass after a message or recipient became active."""
    created = build_engine(store, config).schedule_next_batch()
    logger.debug(f"Coverage pass created {len(created)} occurrence(s)")
    return created


def json_mode() -> bool:
    from cadence_cli.main import is_json
    return is_json()
