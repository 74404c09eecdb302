"""Record storage for Cadence.

Provides the ``RecordStore`` contract and its backends. ``create_store``
picks the backend named in the configuration.
"""

from __future__ import annotations

import logging
from typing import Optional, TYPE_CHECKING

from cadence_cli.storage.base import (
    ActivityLogEntry,
    DuplicateDestinationError,
    LogKind,
    Message,
    Occurrence,
    Recipient,
    RecordStore,
    Setting,
    StorageError,
)
from cadence_cli.storage.memory import MemoryRecordStore

if TYPE_CHECKING:
    from cadence_cli.config import CadenceConfig

logger = logging.getLogger(__name__)


def create_store(config: Optional["CadenceConfig"] = None) -> RecordStore:
    """Create the record store configured in ``config.storage.backend``.

    Args:
        config: Cadence configuration (uses global if not provided)

    Returns:
        A ready-to-use record store with default settings seeded

    Raises:
        ValueError: If the backend name is unknown
    """
    if config is None:
        from cadence_cli.config import get_config
        config = get_config()

    backend = config.storage.backend.lower()
    if backend == "memory":
        logger.debug("Using in-memory record store")
        return MemoryRecordStore()
    if backend == "sqlite":
        from cadence_cli.database.store import SqlRecordStore
        logger.debug(f"Using SQL record store at {config.database_url}")
        return SqlRecordStore(config.database_url)

    raise ValueError(f"Unknown storage backend: {config.storage.backend}")


__all__ = [
    "ActivityLogEntry",
    "DuplicateDestinationError",
    "LogKind",
    "MemoryRecordStore",
    "Message",
    "Occurrence",
    "Recipient",
    "RecordStore",
    "Setting",
    "StorageError",
    "create_store",
]
