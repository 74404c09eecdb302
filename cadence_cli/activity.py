"""Activity log sink.

Writes human-readable activity entries to the record store and mirrors
each one to the Python logger, so the daemon log and the ``logs`` CLI
command tell the same story.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from cadence_cli.storage.base import ActivityLogEntry, LogKind, RecordStore

logger = logging.getLogger(__name__)

_LEVELS = {
    LogKind.SUCCESS: logging.INFO,
    LogKind.INFO: logging.INFO,
    LogKind.WARNING: logging.WARNING,
    LogKind.ERROR: logging.ERROR,
}


@dataclass
class DispatchStats:
    """Dashboard numbers derived from the store."""

    messages_sent: int
    active_recipients: int
    success_rate: float
    next_scheduled: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages_sent": self.messages_sent,
            "active_recipients": self.active_recipients,
            "success_rate": self.success_rate,
            "next_scheduled": self.next_scheduled.isoformat() if self.next_scheduled else None,
        }


class ActivityLog:
    """Append-only activity entries backed by a ``RecordStore``.

    Recording never raises: a store failure is reported to the Python
    logger and swallowed so a logging side effect cannot abort a
    dispatch pass.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def record(
        self,
        kind: LogKind,
        text: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> Optional[ActivityLogEntry]:
        kind = LogKind(kind)
        context = ""
        if message_id is not None or recipient_id is not None:
            context = f" [message={message_id} recipient={recipient_id}]"
        logger.log(_LEVELS[kind], f"{text}{context}")

        try:
            return self._store.create_log(kind, text, message_id, recipient_id)
        except Exception as e:
            logger.error(f"Failed to write activity entry: {e}")
            return None

    def success(self, text: str, message_id: Optional[int] = None,
                recipient_id: Optional[int] = None) -> Optional[ActivityLogEntry]:
        return self.record(LogKind.SUCCESS, text, message_id, recipient_id)

    def error(self, text: str, message_id: Optional[int] = None,
              recipient_id: Optional[int] = None) -> Optional[ActivityLogEntry]:
        return self.record(LogKind.ERROR, text, message_id, recipient_id)

    def info(self, text: str, message_id: Optional[int] = None,
             recipient_id: Optional[int] = None) -> Optional[ActivityLogEntry]:
        return self.record(LogKind.INFO, text, message_id, recipient_id)

    def warning(self, text: str, message_id: Optional[int] = None,
                recipient_id: Optional[int] = None) -> Optional[ActivityLogEntry]:
        return self.record(LogKind.WARNING, text, message_id, recipient_id)

    def recent(self, limit: int = 100) -> List[ActivityLogEntry]:
        return self._store.list_logs(limit)

    def prune(self, older_than_days: int) -> int:
        """Delete entries older than the retention window."""
        deleted = self._store.delete_old_logs(older_than_days)
        if deleted:
            logger.info(f"Pruned {deleted} activity entries older than {older_than_days} days")
        return deleted

    def stats(self) -> DispatchStats:
        return DispatchStats(
            messages_sent=self._store.messages_sent_count(),
            active_recipients=self._store.active_recipients_count(),
            success_rate=round(self._store.success_rate(), 1),
            next_scheduled=self._store.next_due_time(),
        )
