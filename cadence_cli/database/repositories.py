"""Database repositories for Cadence.

Session-scoped data access for each table. The repositories return ORM
records; ``cadence_cli.database.store`` turns them into the plain
dataclasses of the store contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cadence_cli.database.models import (
    ActivityLogRecord,
    MessageRecord,
    OccurrenceRecord,
    RecipientRecord,
    SettingRecord,
)


class MessageRepository:
    """Repository for message records."""

    def __init__(self, session: Session):
        self.session = session

    def get_all(self) -> List[MessageRecord]:
        stmt = select(MessageRecord).order_by(
            MessageRecord.created_at.desc(), MessageRecord.id.desc()
        )
        return list(self.session.scalars(stmt))

    def get_by_id(self, message_id: int) -> Optional[MessageRecord]:
        return self.session.get(MessageRecord, message_id)

    def create(self, title: str, body: str, active: bool = True) -> MessageRecord:
        record = MessageRecord(title=title, body=body, active=active)
        self.session.add(record)
        self.session.flush()
        return record

    def update(self, message_id: int, **kwargs: Any) -> Optional[MessageRecord]:
        """
        Update message fields.

        Args:
            message_id: Message ID
            **kwargs: Fields to update (title, body, active)

        Returns:
            Updated record if found, None otherwise
        """
        record = self.get_by_id(message_id)
        if record is None:
            return None

        for key, value in kwargs.items():
            if key not in ("title", "body", "active"):
                raise ValueError(f"Unknown message field: {key}")
            setattr(record, key, value)

        self.session.flush()
        return record

    def delete(self, message_id: int) -> bool:
        record = self.get_by_id(message_id)
        if record is None:
            return False
        self.session.delete(record)
        return True


class RecipientRepository:
    """Repository for recipient records."""

    def __init__(self, session: Session):
        self.session = session

    def get_all(self) -> List[RecipientRecord]:
        stmt = select(RecipientRecord).order_by(
            RecipientRecord.created_at.desc(), RecipientRecord.id.desc()
        )
        return list(self.session.scalars(stmt))

    def get_by_id(self, recipient_id: int) -> Optional[RecipientRecord]:
        return self.session.get(RecipientRecord, recipient_id)

    def get_by_destination(self, destination: str) -> Optional[RecipientRecord]:
        stmt = select(RecipientRecord).where(RecipientRecord.destination == destination)
        return self.session.scalars(stmt).first()

    def create(self, name: str, destination: str, active: bool = True) -> RecipientRecord:
        record = RecipientRecord(name=name, destination=destination, active=active)
        self.session.add(record)
        self.session.flush()
        return record

    def update(self, recipient_id: int, **kwargs: Any) -> Optional[RecipientRecord]:
        record = self.get_by_id(recipient_id)
        if record is None:
            return None

        for key, value in kwargs.items():
            if key not in ("name", "destination", "active"):
                raise ValueError(f"Unknown recipient field: {key}")
            setattr(record, key, value)

        self.session.flush()
        return record

    def delete(self, recipient_id: int) -> bool:
        record = self.get_by_id(recipient_id)
        if record is None:
            return False
        self.session.delete(record)
        return True

    def count_active(self) -> int:
        stmt = select(func.count(RecipientRecord.id)).where(RecipientRecord.active.is_(True))
        return self.session.scalar(stmt) or 0


class OccurrenceRepository:
    """
    Repository for occurrence records.

    Pending-pair uniqueness is enforced by the partial unique index on
    (message_id, recipient_id) where completed is false; callers that
    race on the same pair get an IntegrityError on flush.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_all(self) -> List[OccurrenceRecord]:
        stmt = select(OccurrenceRecord).order_by(
            OccurrenceRecord.due_time, OccurrenceRecord.id
        )
        return list(self.session.scalars(stmt))

    def get_pending(self, as_of: datetime) -> List[OccurrenceRecord]:
        """
        Get uncompleted occurrences that are due.

        Args:
            as_of: Cut-off time (inclusive)

        Returns:
            Occurrences ordered by due time, then id
        """
        stmt = (
            select(OccurrenceRecord)
            .where(OccurrenceRecord.completed.is_(False))
            .where(OccurrenceRecord.due_time <= as_of)
            .order_by(OccurrenceRecord.due_time, OccurrenceRecord.id)
        )
        return list(self.session.scalars(stmt))

    def get_by_id(self, occurrence_id: int) -> Optional[OccurrenceRecord]:
        return self.session.get(OccurrenceRecord, occurrence_id)

    def get_live_pending(self, message_id: int, recipient_id: int) -> Optional[OccurrenceRecord]:
        stmt = (
            select(OccurrenceRecord)
            .where(OccurrenceRecord.message_id == message_id)
            .where(OccurrenceRecord.recipient_id == recipient_id)
            .where(OccurrenceRecord.completed.is_(False))
        )
        return self.session.scalars(stmt).first()

    def create(self, message_id: int, recipient_id: int, due_time: datetime) -> OccurrenceRecord:
        record = OccurrenceRecord(
            message_id=message_id,
            recipient_id=recipient_id,
            due_time=due_time,
            completed=False,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def mark_completed(self, occurrence_id: int) -> Optional[OccurrenceRecord]:
        record = self.get_by_id(occurrence_id)
        if record is None:
            return None
        record.completed = True
        self.session.flush()
        return record

    def delete(self, occurrence_id: int) -> bool:
        record = self.get_by_id(occurrence_id)
        if record is None:
            return False
        self.session.delete(record)
        return True

    def delete_completed_before(self, cutoff: datetime) -> int:
        stmt = (
            delete(OccurrenceRecord)
            .where(OccurrenceRecord.completed.is_(True))
            .where(OccurrenceRecord.created_at < cutoff)
        )
        return self.session.execute(stmt).rowcount or 0

    def min_pending_due_time(self) -> Optional[datetime]:
        stmt = select(func.min(OccurrenceRecord.due_time)).where(
            OccurrenceRecord.completed.is_(False)
        )
        return self.session.scalar(stmt)


class ActivityLogRepository:
    """Repository for activity log entries."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        kind: str,
        text: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> ActivityLogRecord:
        record = ActivityLogRecord(
            kind=kind,
            text=text,
            message_id=message_id,
            recipient_id=recipient_id,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def get_recent(self, limit: int = 100) -> List[ActivityLogRecord]:
        stmt = (
            select(ActivityLogRecord)
            .order_by(ActivityLogRecord.created_at.desc(), ActivityLogRecord.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def delete_before(self, cutoff: datetime) -> int:
        stmt = delete(ActivityLogRecord).where(ActivityLogRecord.created_at < cutoff)
        return self.session.execute(stmt).rowcount or 0

    def count_by_kind(self, *kinds: str) -> int:
        stmt = select(func.count(ActivityLogRecord.id)).where(ActivityLogRecord.kind.in_(kinds))
        return self.session.scalar(stmt) or 0


class SettingRepository:
    """Repository for key/value settings."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> Optional[SettingRecord]:
        stmt = select(SettingRecord).where(SettingRecord.key == key)
        return self.session.scalars(stmt).first()

    def get_all(self) -> List[SettingRecord]:
        return list(self.session.scalars(select(SettingRecord).order_by(SettingRecord.key)))

    def upsert(self, key: str, value: str) -> SettingRecord:
        record = self.get(key)
        if record is None:
            record = SettingRecord(key=key, value=value)
            self.session.add(record)
        else:
            record.value = value
        self.session.flush()
        return record
