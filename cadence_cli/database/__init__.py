"""SQLAlchemy persistence for the Cadence record store."""

from cadence_cli.database.store import SqlRecordStore

__all__ = ["SqlRecordStore"]
