from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from timetrack.core.errors import NotFound
from timetrack.models.task import Task
from timetrack.models.time_entry import TimeEntry
from timetrack.services.duration_accountant import to_utc
from timetrack.services.entry_state_machine import EntrySnapshot

_MUTABLE_FIELDS = (
    "end_time",
    "is_paused",
    "last_resumed_at",
    "paused_at",
    "total_paused_duration",
    "duration",
)


def _utc_or_none(dt: Optional[datetime]) -> Optional[datetime]:
    return None if dt is None else to_utc(dt)


def to_snapshot(row: TimeEntry) -> EntrySnapshot:
    return EntrySnapshot(
        id=row.id,
        task_id=row.task_id,
        start_time=to_utc(row.start_time),
        end_time=_utc_or_none(row.end_time),
        is_paused=bool(row.is_paused),
        last_resumed_at=_utc_or_none(row.last_resumed_at),
        paused_at=_utc_or_none(row.paused_at),
        total_paused_duration=float(row.total_paused_duration or 0.0),
        duration=None if row.duration is None else float(row.duration),
        created_at=_utc_or_none(row.created_at),
    )


class TimeEntryRepository:
    """Reads and writes time entry rows inside a caller-owned session.

    Nothing here commits; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def task_exists(self, task_id: str) -> bool:
        return self.db.query(Task.id).filter(Task.id == str(task_id)).first() is not None

    def get(self, entry_id: str) -> Optional[EntrySnapshot]:
        row = self.db.query(TimeEntry).filter(TimeEntry.id == str(entry_id)).first()
        if row is None:
            return None
        return to_snapshot(row)

    def load_for_update(self, entry_id: str) -> Optional[EntrySnapshot]:
        """Load an entry holding its row lock until the transaction ends.

        Dialects without row locks (SQLite) render no FOR UPDATE clause.
        """
        row = (
            self.db.query(TimeEntry)
            .filter(TimeEntry.id == str(entry_id))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if row is None:
            return None
        return to_snapshot(row)

    def add(self, entry: EntrySnapshot) -> EntrySnapshot:
        row = TimeEntry(
            id=entry.id,
            task_id=entry.task_id,
            start_time=entry.start_time,
            end_time=entry.end_time,
            is_paused=entry.is_paused,
            last_resumed_at=entry.last_resumed_at,
            paused_at=entry.paused_at,
            total_paused_duration=entry.total_paused_duration,
            duration=entry.duration,
        )
        self.db.add(row)
        self.db.flush()
        self.db.refresh(row)
        return to_snapshot(row)

    def save(self, entry: EntrySnapshot) -> EntrySnapshot:
        row = self.db.get(TimeEntry, entry.id)
        if row is None:
            raise NotFound(f"Time entry {entry.id} not found")

        for field in _MUTABLE_FIELDS:
            setattr(row, field, getattr(entry, field))

        self.db.flush()
        self.db.refresh(row)
        return to_snapshot(row)

    def list_entries(
        self,
        *,
        task_id: Optional[str] = None,
        active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EntrySnapshot]:
        q = self.db.query(TimeEntry)

        if task_id is not None:
            q = q.filter(TimeEntry.task_id == str(task_id))
        if active is True:
            q = q.filter(TimeEntry.end_time.is_(None))
        elif active is False:
            q = q.filter(TimeEntry.end_time.isnot(None))

        # Active timers first, then newest first.
        rows = (
            q.order_by(TimeEntry.end_time.is_(None).desc(), TimeEntry.start_time.desc())
            .offset(int(offset))
            .limit(int(limit))
            .all()
        )
        return [to_snapshot(r) for r in rows]
