"""Record store contract for Cadence.

Defines the entities the dispatch engine works with and the abstract
``RecordStore`` interface. Concrete backends live in ``memory.py``
(arena tables, the default for tests and throwaway runs) and
``cadence_cli.database.store`` (SQLAlchemy).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# Setting keys read by the scheduler
AUTO_SEND_ENABLED = "auto_send_enabled"
INTERVAL_MINUTES = "interval_minutes"
INTERVAL_VARIATION_MINUTES = "interval_variation_minutes"
BOT_TOKEN = "bot_token"

DEFAULT_SETTINGS: Dict[str, str] = {
    BOT_TOKEN: "",
    AUTO_SEND_ENABLED: "true",
    INTERVAL_MINUTES: "60",
    INTERVAL_VARIATION_MINUTES: "10",
}

# Upper bound on base + variation, one year
MAX_INTERVAL_MINUTES = 525600


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LogKind(str, Enum):
    """Severity of an activity log entry."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class StorageError(Exception):
    """Base exception for record store errors."""

    def __init__(self, message: str, record_id: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.record_id = record_id

    def __str__(self) -> str:
        if self.record_id is not None:
            return f"{self.message} (id: {self.record_id})"
        return self.message


class DuplicateDestinationError(StorageError):
    """Raised when a recipient destination is already registered."""
    pass


@dataclass
class Message:
    """A pre-authored message body (may contain HTML markup)."""

    id: int
    title: str
    body: str
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Recipient:
    """A delivery channel, identified by a transport-specific destination."""

    id: int
    name: str
    destination: str
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "destination": self.destination,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Occurrence:
    """One planned (or already attempted) delivery of a message to a recipient."""

    id: int
    message_id: int
    recipient_id: int
    due_time: datetime
    completed: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "recipient_id": self.recipient_id,
            "due_time": self.due_time.isoformat(),
            "completed": self.completed,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ActivityLogEntry:
    """Append-only, human-readable record of something the engine did."""

    id: int
    kind: LogKind
    text: str
    message_id: Optional[int] = None
    recipient_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "text": self.text,
            "message_id": self.message_id,
            "recipient_id": self.recipient_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Setting:
    """Key/value setting; values are always strings."""

    key: str
    value: str
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": self.updated_at.isoformat(),
        }


class RecordStore(ABC):
    """Storage interface consumed by the scheduler, the CLI and the daemon.

    Every method is synchronous and completes without yielding to the
    event loop, so a single call is atomic with respect to other
    coroutines running on the same loop. ``create_occurrence_if_absent``
    is the compare-and-create primitive that keeps at most one pending
    occurrence per (message, recipient) pair.
    """

    # Messages

    @abstractmethod
    def list_messages(self) -> List[Message]:
        """Return all messages, newest first."""

    @abstractmethod
    def get_message(self, message_id: int) -> Optional[Message]:
        ...

    @abstractmethod
    def create_message(self, title: str, body: str, active: bool = True) -> Message:
        ...

    @abstractmethod
    def update_message(self, message_id: int, **changes: Any) -> Optional[Message]:
        """Apply ``title``/``body``/``active`` changes; None if missing."""

    @abstractmethod
    def delete_message(self, message_id: int) -> bool:
        ...

    # Recipients

    @abstractmethod
    def list_recipients(self) -> List[Recipient]:
        """Return all recipients, newest first."""

    @abstractmethod
    def get_recipient(self, recipient_id: int) -> Optional[Recipient]:
        ...

    @abstractmethod
    def get_recipient_by_destination(self, destination: str) -> Optional[Recipient]:
        ...

    @abstractmethod
    def create_recipient(self, name: str, destination: str, active: bool = True) -> Recipient:
        """Create a recipient.

        Raises:
            DuplicateDestinationError: If the destination is already registered
        """

    @abstractmethod
    def update_recipient(self, recipient_id: int, **changes: Any) -> Optional[Recipient]:
        """Apply ``name``/``destination``/``active`` changes; None if missing."""

    @abstractmethod
    def delete_recipient(self, recipient_id: int) -> bool:
        ...

    # Occurrences

    @abstractmethod
    def list_occurrences(self) -> List[Occurrence]:
        """Return all occurrences ordered by due time."""

    @abstractmethod
    def list_pending_occurrences(self, as_of: datetime) -> List[Occurrence]:
        """Return uncompleted occurrences due at or before ``as_of``.

        Ordered by due time ascending, ties broken by id.
        """

    @abstractmethod
    def create_occurrence(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Occurrence:
        ...

    @abstractmethod
    def create_occurrence_if_absent(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Optional[Occurrence]:
        """Create a pending occurrence unless the pair already has one.

        Returns:
            The new occurrence, or None if a live pending one exists
        """

    @abstractmethod
    def mark_completed(self, occurrence_id: int) -> Optional[Occurrence]:
        ...

    @abstractmethod
    def has_live_pending(self, message_id: int, recipient_id: int) -> bool:
        ...

    @abstractmethod
    def delete_occurrence(self, occurrence_id: int) -> bool:
        ...

    @abstractmethod
    def prune_completed_occurrences(self, older_than: datetime) -> int:
        """Delete completed occurrences created before ``older_than``."""

    def next_due_time(self) -> Optional[datetime]:
        """Earliest due time over all pending occurrences."""
        pending = [o.due_time for o in self.list_occurrences() if not o.completed]
        return min(pending) if pending else None

    # Activity log

    @abstractmethod
    def create_log(
        self,
        kind: LogKind,
        text: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> ActivityLogEntry:
        ...

    @abstractmethod
    def list_logs(self, limit: int = 100) -> List[ActivityLogEntry]:
        """Return the most recent entries, newest first."""

    @abstractmethod
    def delete_old_logs(self, older_than_days: int) -> int:
        ...

    # Settings

    @abstractmethod
    def get_setting(self, key: str) -> Optional[Setting]:
        ...

    @abstractmethod
    def set_setting(self, key: str, value: str) -> Setting:
        ...

    @abstractmethod
    def list_settings(self) -> List[Setting]:
        ...

    def seed_default_settings(self) -> None:
        """Write any default setting that is not present yet."""
        for key, value in DEFAULT_SETTINGS.items():
            if self.get_setting(key) is None:
                self.set_setting(key, value)

    # Stats

    @abstractmethod
    def messages_sent_count(self) -> int:
        ...

    @abstractmethod
    def active_recipients_count(self) -> int:
        ...

    @abstractmethod
    def success_rate(self) -> float:
        """Percentage of delivery attempts that succeeded (100.0 if none)."""

    def close(self) -> None:
        """Release backend resources."""


def cutoff_for_days(days: int, now: Optional[datetime] = None) -> datetime:
    """Timestamp ``days`` before ``now``."""
    return (now or utcnow()) - timedelta(days=days)
