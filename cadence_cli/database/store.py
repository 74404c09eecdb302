"""SQLAlchemy-backed record store.

Each store call runs in its own short session, so the CLI process and a
running daemon can share one SQLite file.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError

from cadence_cli.database.connection import create_tables, dispose_engine, get_db_session
from cadence_cli.database.models import (
    ActivityLogRecord,
    MessageRecord,
    OccurrenceRecord,
    RecipientRecord,
    SettingRecord,
)
from cadence_cli.database.repositories import (
    ActivityLogRepository,
    MessageRepository,
    OccurrenceRepository,
    RecipientRepository,
    SettingRepository,
)
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
)

logger = logging.getLogger(__name__)


def _message(record: MessageRecord) -> Message:
    return Message(
        id=record.id,
        title=record.title,
        body=record.body,
        active=record.active,
        created_at=record.created_at,
    )


def _recipient(record: RecipientRecord) -> Recipient:
    return Recipient(
        id=record.id,
        name=record.name,
        destination=record.destination,
        active=record.active,
        created_at=record.created_at,
    )


def _occurrence(record: OccurrenceRecord) -> Occurrence:
    return Occurrence(
        id=record.id,
        message_id=record.message_id,
        recipient_id=record.recipient_id,
        due_time=record.due_time,
        completed=record.completed,
        created_at=record.created_at,
    )


def _log_entry(record: ActivityLogRecord) -> ActivityLogEntry:
    return ActivityLogEntry(
        id=record.id,
        kind=LogKind(record.kind),
        text=record.text,
        message_id=record.message_id,
        recipient_id=record.recipient_id,
        created_at=record.created_at,
    )


def _setting(record: SettingRecord) -> Setting:
    return Setting(key=record.key, value=record.value, updated_at=record.updated_at)


class SqlRecordStore(RecordStore):
    """``RecordStore`` over a SQLAlchemy database (SQLite by default).

    Example:
        store = SqlRecordStore("sqlite:////var/lib/cadence/cadence.db")
        message = store.create_message("Promo", "<b>Hello</b>")
    """

    def __init__(self, database_url: str, seed_defaults: bool = True) -> None:
        self.database_url = database_url
        create_tables(database_url)
        if seed_defaults:
            self.seed_default_settings()

    def _session(self):
        return get_db_session(self.database_url)

    # Messages

    def list_messages(self) -> List[Message]:
        with self._session() as session:
            return [_message(r) for r in MessageRepository(session).get_all()]

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._session() as session:
            record = MessageRepository(session).get_by_id(message_id)
            return _message(record) if record else None

    def create_message(self, title: str, body: str, active: bool = True) -> Message:
        with self._session() as session:
            return _message(MessageRepository(session).create(title, body, active))

    def update_message(self, message_id: int, **changes: Any) -> Optional[Message]:
        with self._session() as session:
            record = MessageRepository(session).update(message_id, **changes)
            return _message(record) if record else None

    def delete_message(self, message_id: int) -> bool:
        with self._session() as session:
            return MessageRepository(session).delete(message_id)

    # Recipients

    def list_recipients(self) -> List[Recipient]:
        with self._session() as session:
            return [_recipient(r) for r in RecipientRepository(session).get_all()]

    def get_recipient(self, recipient_id: int) -> Optional[Recipient]:
        with self._session() as session:
            record = RecipientRepository(session).get_by_id(recipient_id)
            return _recipient(record) if record else None

    def get_recipient_by_destination(self, destination: str) -> Optional[Recipient]:
        with self._session() as session:
            record = RecipientRepository(session).get_by_destination(destination)
            return _recipient(record) if record else None

    def create_recipient(self, name: str, destination: str, active: bool = True) -> Recipient:
        try:
            with self._session() as session:
                return _recipient(RecipientRepository(session).create(name, destination, active))
        except IntegrityError as e:
            raise DuplicateDestinationError(
                f"Destination already registered: {destination}"
            ) from e

    def update_recipient(self, recipient_id: int, **changes: Any) -> Optional[Recipient]:
        try:
            with self._session() as session:
                record = RecipientRepository(session).update(recipient_id, **changes)
                return _recipient(record) if record else None
        except IntegrityError as e:
            raise DuplicateDestinationError(
                f"Destination already registered: {changes.get('destination')}",
                recipient_id,
            ) from e

    def delete_recipient(self, recipient_id: int) -> bool:
        with self._session() as session:
            return RecipientRepository(session).delete(recipient_id)

    # Occurrences

    def list_occurrences(self) -> List[Occurrence]:
        with self._session() as session:
            return [_occurrence(r) for r in OccurrenceRepository(session).get_all()]

    def list_pending_occurrences(self, as_of: datetime) -> List[Occurrence]:
        with self._session() as session:
            return [_occurrence(r) for r in OccurrenceRepository(session).get_pending(as_of)]

    def create_occurrence(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Occurrence:
        with self._session() as session:
            return _occurrence(
                OccurrenceRepository(session).create(message_id, recipient_id, due_time)
            )

    def create_occurrence_if_absent(
        self, message_id: int, recipient_id: int, due_time: datetime
    ) -> Optional[Occurrence]:
        try:
            with self._session() as session:
                repo = OccurrenceRepository(session)
                if repo.get_live_pending(message_id, recipient_id) is not None:
                    return None
                return _occurrence(repo.create(message_id, recipient_id, due_time))
        except IntegrityError:
            # Another process created the pending occurrence first
            logger.debug(
                f"Pending occurrence for message {message_id} / recipient "
                f"{recipient_id} created concurrently"
            )
            return None

    def mark_completed(self, occurrence_id: int) -> Optional[Occurrence]:
        with self._session() as session:
            record = OccurrenceRepository(session).mark_completed(occurrence_id)
            return _occurrence(record) if record else None

    def has_live_pending(self, message_id: int, recipient_id: int) -> bool:
        with self._session() as session:
            return OccurrenceRepository(session).get_live_pending(message_id, recipient_id) is not None

    def delete_occurrence(self, occurrence_id: int) -> bool:
        with self._session() as session:
            return OccurrenceRepository(session).delete(occurrence_id)

    def prune_completed_occurrences(self, older_than: datetime) -> int:
        with self._session() as session:
            return OccurrenceRepository(session).delete_completed_before(older_than)

    def next_due_time(self) -> Optional[datetime]:
        with self._session() as session:
            return OccurrenceRepository(session).min_pending_due_time()

    # Activity log

    def create_log(
        self,
        kind: LogKind,
        text: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> ActivityLogEntry:
        with self._session() as session:
            record = ActivityLogRepository(session).create(
                LogKind(kind).value, text, message_id, recipient_id
            )
            return _log_entry(record)

    def list_logs(self, limit: int = 100) -> List[ActivityLogEntry]:
        with self._session() as session:
            return [_log_entry(r) for r in ActivityLogRepository(session).get_recent(limit)]

    def delete_old_logs(self, older_than_days: int) -> int:
        with self._session() as session:
            return ActivityLogRepository(session).delete_before(cutoff_for_days(older_than_days))

    # Settings

    def get_setting(self, key: str) -> Optional[Setting]:
        with self._session() as session:
            record = SettingRepository(session).get(key)
            return _setting(record) if record else None

    def set_setting(self, key: str, value: str) -> Setting:
        with self._session() as session:
            return _setting(SettingRepository(session).upsert(key, str(value)))

    def list_settings(self) -> List[Setting]:
        with self._session() as session:
            return [_setting(r) for r in SettingRepository(session).get_all()]

    # Stats

    def messages_sent_count(self) -> int:
        with self._session() as session:
            return ActivityLogRepository(session).count_by_kind(LogKind.SUCCESS.value)

    def active_recipients_count(self) -> int:
        with self._session() as session:
            return RecipientRepository(session).count_active()

    def success_rate(self) -> float:
        with self._session() as session:
            repo = ActivityLogRepository(session)
            succeeded = repo.count_by_kind(LogKind.SUCCESS.value)
            attempts = repo.count_by_kind(LogKind.SUCCESS.value, LogKind.ERROR.value)
        if attempts == 0:
            return 100.0
        return succeeded / attempts * 100

    def close(self) -> None:
        dispose_engine(self.database_url)
