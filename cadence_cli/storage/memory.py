"""In-process record store.

Every table is an append-only arena: a record's id is its slot index
plus one, ids are never reused, and deleting a record leaves an empty
slot behind. Nothing survives a restart.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from cadence_cli.storage.base import (
    ActivityLogEntry,
    DuplicateDestinationError,
    LogKind,
    Message,
    Occurrence,
    Recipient,
    RecordStore,
    Setting,
    cutoff_for_days,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Arena(Generic[T]):
    """Slot table with stable integer keys."""

    def __init__(self) -> None:
        self._slots: List[Optional[T]] = []

    def next_id(self) -> int:
        return len(self._slots) + 1

    def append(self, record: T) -> T:
        self._slots.append(record)
        return record

    def get(self, record_id: int) -> Optional[T]:
        if record_id < 1 or record_id > len(self._slots):
            return None
        return self._slots[record_id - 1]

    def put(self, record_id: int, record: T) -> None:
        self._slots[record_id - 1] = record

    def remove(self, record_id: int) -> bool:
        if self.get(record_id) is None:
            return False
        self._slots[record_id - 1] = None
        return True

    def __iter__(self) -> Iterator[T]:
        return (r for r in self._slots if r is not None)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class MemoryRecordStore(RecordStore):
    """Arena-backed ``RecordStore``.

    Records handed out are copies, so callers cannot change stored state
    except through the store's own methods.
    """

    def __init__(self, seed_defaults: bool = True, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._messages: _Arena[Message] = _Arena()
        self._recipients: _Arena[Recipient] = _Arena()
        self._occurrences: _Arena[Occurrence] = _Arena()
        self._logs: _Arena[ActivityLogEntry] = _Arena()
        self._settings: Dict[str, Setting] = {}

        if seed_defaults:
            self.seed_default_settings()

    @staticmethod
    def _apply(record: T, changes: Dict[str, Any], allowed: tuple) -> T:
        unknown = set(changes) - set(allowed)
        if unknown:
            raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
        return replace(record, **changes)

    # Messages

    def list_messages(self) -> List[Message]:
        return sorted(
            (replace(m) for m in self._messages),
            key=lambda m: (m.created_at, m.id),
            reverse=True,
        )

    def get_message(self, message_id: int) -> Optional[Message]:
        message = self._messages.get(message_id)
        return replace(message) if message else None

    def create_message(self, title: str, body: str, active: bool = True) -> Message:
        message = Message(
            id=self._messages.next_id(),
            title=title,
            body=body,
            active=active,
            created_at=self._clock(),
        )
        self._messages.append(message)
        return replace(message)

    def update_message(self, message_id: int, **changes: Any) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None:
            return None
        updated = self._apply(message, changes, ("title", "body", "active"))
        self._messages.put(message_id, updated)
        return replace(updated)

    def delete_message(self, message_id: int) -> bool:
        return self._messages.remove(message_id)

    # Recipients

    def list_recipients(self) -> List[Recipient]:
        return sorted(
            (replace(r) for r in self._recipients),
            key=lambda r: (r.created_at, r.id),
            reverse=True,
        )

    def get_recipient(self, recipient_id: int) -> Optional[Recipient]:
        recipient = self._recipients.get(recipient_id)
        return replace(recipient) if recipient else None

    def get_recipient_by_destination(self, destination: str) -> Optional[Recipient]:
        for recipient in self._recipients:
            if recipient.destination == destination:
                return replace(recipient)
        return None

    def create_recipient(self, name: str, destination: str, active: bool = True) -> Recipient:
        if self.get_recipient_by_destination(destination) is not None:
            raise DuplicateDestinationError(
                f"Destination already registered: {destination}"
            )
        recipient = Recipient(
            id=self._recipients.next_id(),
            name=name,
            destination=destination,
            active=active,
            created_at=self._clock(),
        )
        self._recipients.append(recipient)
        return replace(recipient)

    def update_recipient(self, recipient_id: int, **changes: Any) -> Optional[Recipient]:
        recipient = self._recipients.get(recipient_id)
        if recipient is None:
            return None
        destination = changes.get("destination")
        if destination is not None and destination != recipient.destination:
            if self.get_recipient_by_destination(destination) is not None:
                raise DuplicateDestinationError(
                    f"Destination already registered: {destination}", recipient_id
                )
        updated = self._apply(recipient, changes, ("name", "destination", "active"))
        self._recipients.put(recipient_id, updated)
        return replace(updated)

    def delete_recipient(self, recipient_id: int) -> bool:
        return self._recipients.remove(recipient_id)

    # Occurrences

    def list_occurrences(self) -> List[Occurrence]:
        return sorted(
            (replace(o) for o in self._occurrences),
            key=lambda o: (o.due_time, o.id),
        )

    def list_pending_occurrences(self, as_of: datetime) -> List[Occurrence]:
        return [
            o for o in self.list_occurrences()
            if not o.completed and o.due_time <= as_of
        ]

    def create_occurrence(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Occurrence:
        occurrence = Occurrence(
            id=self._occurrences.next_id(),
            message_id=message_id,
            recipient_id=recipient_id,
            due_time=due_time,
            completed=False,
            created_at=self._clock(),
        )
        self._occurrences.append(occurrence)
        return replace(occurrence)

    def create_occurrence_if_absent(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Optional[Occurrence]:
        if self.has_live_pending(message_id, recipient_id):
            return None
        return self.create_occurrence(message_id, recipient_id, due_time)

    def mark_completed(self, occurrence_id: int) -> Optional[Occurrence]:
        occurrence = self._occurrences.get(occurrence_id)
        if occurrence is None:
            return None
        updated = replace(occurrence, completed=True)
        self._occurrences.put(occurrence_id, updated)
        return replace(updated)

    def has_live_pending(self, message_id: int, recipient_id: int) -> bool:
        return any(
            o.message_id == message_id
            and o.recipient_id == recipient_id
            and not o.completed
            for o in self._occurrences
        )

    def delete_occurrence(self, occurrence_id: int) -> bool:
        return self._occurrences.remove(occurrence_id)

    def prune_completed_occurrences(self, older_than: datetime) -> int:
        stale = [
            o.id for o in self._occurrences
            if o.completed and o.created_at < older_than
        ]
        for occurrence_id in stale:
            self._occurrences.remove(occurrence_id)
        return len(stale)

    # Activity log

    def create_log(
        self,
        kind: LogKind,
        text: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=self._logs.next_id(),
            kind=LogKind(kind),
            text=text,
            message_id=message_id,
            recipient_id=recipient_id,
            created_at=self._clock(),
        )
        self._logs.append(entry)
        return replace(entry)

    def list_logs(self, limit: int = 100) -> List[ActivityLogEntry]:
        entries = sorted(self._logs, key=lambda e: (e.created_at, e.id), reverse=True)
        return [replace(e) for e in entries[:limit]]

    def delete_old_logs(self, older_than_days: int) -> int:
        cutoff = cutoff_for_days(older_than_days, self._clock())
        stale = [e.id for e in self._logs if e.created_at < cutoff]
        for entry_id in stale:
            self._logs.remove(entry_id)
        logger.debug(f"Deleted {len(stale)} activity entries older than {older_than_days} days")
        return len(stale)

    # Settings

    def get_setting(self, key: str) -> Optional[Setting]:
        setting = self._settings.get(key)
        return replace(setting) if setting else None

    def set_setting(self, key: str, value: str) -> Setting:
        setting = Setting(key=key, value=str(value), updated_at=self._clock())
        self._settings[key] = setting
        return replace(setting)

    def list_settings(self) -> List[Setting]:
        return [replace(s) for s in self._settings.values()]

    # Stats

    def messages_sent_count(self) -> int:
        return sum(1 for e in self._logs if e.kind == LogKind.SUCCESS)

    def active_recipients_count(self) -> int:
        return sum(1 for r in self._recipients if r.active)

    def success_rate(self) -> float:
        attempts = [e for e in self._logs if e.kind in (LogKind.SUCCESS, LogKind.ERROR)]
        if not attempts:
            return 100.0
        succeeded = sum(1 for e in attempts if e.kind == LogKind.SUCCESS)
        return succeeded / len(attempts) * 100
