from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timetrack.core.errors import NotFound, StorageFailure, TaskNotFound, TimeTrackingError
from timetrack.services import duration_accountant as accountant
from timetrack.services import entry_state_machine as machine
from timetrack.services.cache_notifier import CacheNotifier
from timetrack.services.concurrency_guard import ConcurrencyGuard, EntryLockRegistry
from timetrack.services.entry_state_machine import EntrySnapshot, TransitionResult
from timetrack.services.time_entry_repository import TimeEntryRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EntryView:
    """An entry plus its read-time elapsed snapshot (never persisted)."""

    entry: EntrySnapshot
    current_elapsed_seconds: Optional[float]


class TimeEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        notifier: Optional[CacheNotifier] = None,
        lock_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        locks: Optional[EntryLockRegistry] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.guard = ConcurrencyGuard(
            session_factory,
            lock_timeout_seconds=lock_timeout_seconds,
            notifier=notifier,
            locks=locks,
        )

    def _now(self, now: Optional[datetime]) -> datetime:
        return accountant.to_utc(now if now is not None else self.clock())

    def start(self, task_id: str, *, now: Optional[datetime] = None) -> EntrySnapshot:
        now = self._now(now)

        db = self.session_factory()
        try:
            repo = TimeEntryRepository(db)
            if not repo.task_exists(task_id):
                raise TaskNotFound(f"Task with ID {task_id} does not exist.")

            entry = repo.add(machine.start(str(uuid4()), str(task_id), now))
            db.commit()
        except TimeTrackingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Time entry start failed", extra={"task_id": str(task_id)})
            raise StorageFailure("Time entry store unavailable") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Time entry started", extra={"time_entry_id": entry.id, "task_id": entry.task_id})
        self.guard.notify(entry.id, entry)
        return entry

    def _transition(self, name: str, entry_id: str, step, now: Optional[datetime]) -> EntrySnapshot:
        def apply(current: EntrySnapshot) -> TransitionResult:
            # Clock is read under the entry lock so timestamps follow commit order.
            return step(current, self._now(now))

        result: TransitionResult = self.guard.run(entry_id, apply)

        if result.changed:
            logger.info(
                "Time entry transition applied",
                extra={
                    "transition": name,
                    "time_entry_id": result.entry.id,
                    "total_paused_duration": result.entry.total_paused_duration,
                    "duration": result.entry.duration,
                },
            )
        return result.entry

    def pause(self, entry_id: str, *, now: Optional[datetime] = None) -> EntrySnapshot:
        return self._transition("paused", entry_id, machine.pause, now)

    def resume(self, entry_id: str, *, now: Optional[datetime] = None) -> EntrySnapshot:
        return self._transition("resumed", entry_id, machine.resume, now)

    def stop(self, entry_id: str, *, now: Optional[datetime] = None) -> EntrySnapshot:
        return self._transition("stopped", entry_id, machine.stop, now)

    def get(self, entry_id: str, *, now: Optional[datetime] = None) -> EntryView:
        now = self._now(now)

        db = self.session_factory()
        try:
            entry = TimeEntryRepository(db).get(entry_id)
        except SQLAlchemyError as exc:
            logger.exception("Time entry read failed", extra={"time_entry_id": str(entry_id)})
            raise StorageFailure("Time entry store unavailable") from exc
        finally:
            db.close()

        if entry is None:
            raise NotFound("Time entry not found")
        return self.view(entry, now)

    def list_entries(
        self,
        *,
        task_id: Optional[str] = None,
        active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[EntryView]:
        now = self._now(now)

        db = self.session_factory()
        try:
            entries = TimeEntryRepository(db).list_entries(
                task_id=task_id,
                active=active,
                limit=limit,
                offset=offset,
            )
        except SQLAlchemyError as exc:
            logger.exception("Time entry list failed", extra={"task_id": task_id, "active": active})
            raise StorageFailure("Time entry store unavailable") from exc
        finally:
            db.close()

        return [self.view(e, now) for e in entries]

    @staticmethod
    def view(entry: EntrySnapshot, now: datetime) -> EntryView:
        elapsed = None
        if entry.end_time is None:
            elapsed = accountant.active_elapsed(entry, now)
        return EntryView(entry=entry, current_elapsed_seconds=elapsed)
