from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Set, Tuple

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from timetrack.core.errors import Busy, NotFound, StorageFailure, TimeTrackingError
from timetrack.database import is_postgresql
from timetrack.services.cache_notifier import CacheNotifier, NullCacheNotifier
from timetrack.services.entry_state_machine import EntrySnapshot, TransitionResult
from timetrack.services.time_entry_repository import TimeEntryRepository

logger = logging.getLogger(__name__)

# SQLSTATE lock_not_available, raised when lock_timeout expires.
PG_LOCK_NOT_AVAILABLE = "55P03"

# Entries whose last published sequence is remembered for stale-drop checks.
PUBLISHED_HISTORY = 10000

Transition = Callable[[EntrySnapshot], TransitionResult]


class EntryLockRegistry:
    """Process-local exclusive locks keyed by entry id.

    Locks are created on demand and dropped once nobody holds or waits for
    them, so the registry does not grow with the number of entries ever seen.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, entry_id: str, timeout: float) -> Iterator[None]:
        with self._mutex:
            slot = self._locks.setdefault(entry_id, [threading.Lock(), 0])
            slot[1] += 1

        acquired = False
        try:
            acquired = slot[0].acquire(timeout=timeout)
            if not acquired:
                raise Busy(f"Time entry {entry_id} is locked by another request; retry")
            yield
        finally:
            if acquired:
                slot[0].release()
            with self._mutex:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(entry_id, None)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)


def _is_lock_timeout(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE


class ConcurrencyGuard:
    """Runs one transition per entry at a time, atomically.

    The process-local lock serialises request workers of this process; the
    row lock taken by ``load_for_update`` serialises workers of other
    processes sharing the same PostgreSQL database. The cache is notified
    after commit and after the entry lock is released; each commit carries a
    sequence number taken under the lock, so the cache never moves back to an
    older state even when notifications race.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        lock_timeout_seconds: float = 5.0,
        notifier: Optional[CacheNotifier] = None,
        locks: Optional[EntryLockRegistry] = None,
    ):
        self.session_factory = session_factory
        self.lock_timeout_seconds = float(lock_timeout_seconds)
        self.notifier = notifier if notifier is not None else NullCacheNotifier()
        self.locks = locks if locks is not None else EntryLockRegistry()
        self._sequence = itertools.count(1)
        self._seq_mutex = threading.Lock()
        self._pending: Dict[str, Tuple[int, EntrySnapshot]] = {}
        self._publishing: Set[str] = set()
        self._published: OrderedDict[str, int] = OrderedDict()

    def _set_row_lock_timeout(self, db: Session) -> None:
        if not is_postgresql(db):
            return
        timeout_ms = max(1, int(self.lock_timeout_seconds * 1000))
        db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    def next_sequence(self) -> int:
        with self._seq_mutex:
            return next(self._sequence)

    def run(self, entry_id: str, transition: Transition) -> TransitionResult:
        entry_id = str(entry_id)

        with self.locks.hold(entry_id, self.lock_timeout_seconds):
            result = self._run_locked(entry_id, transition)
            # Numbered under the entry lock, so sequence order is commit order.
            sequence = self.next_sequence() if result.changed else None

        if sequence is not None:
            self.notify(entry_id, result.entry, sequence)
        return result

    def _run_locked(self, entry_id: str, transition: Transition) -> TransitionResult:
        db = self.session_factory()
        try:
            repo = TimeEntryRepository(db)
            self._set_row_lock_timeout(db)

            current = repo.load_for_update(entry_id)
            if current is None:
                raise NotFound(f"Time entry {entry_id} not found")

            result = transition(current)

            if not result.changed:
                db.rollback()
                return result

            saved = repo.save(result.entry)
            db.commit()
            return TransitionResult(entry=saved, changed=True)

        except TimeTrackingError:
            db.rollback()
            raise
        except OperationalError as exc:
            db.rollback()
            if _is_lock_timeout(exc):
                raise Busy(f"Time entry {entry_id} is locked by another request; retry") from exc
            logger.exception("Time entry transition failed", extra={"time_entry_id": entry_id})
            raise StorageFailure("Time entry store unavailable") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Time entry transition failed", extra={"time_entry_id": entry_id})
            raise StorageFailure("Time entry store unavailable") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def notify(self, entry_id: str, entry: EntrySnapshot, sequence: Optional[int] = None) -> bool:
        """Publish a committed state without blocking on other publishers.

        At most one thread publishes for an entry at a time. A state arriving
        while another is being sent is queued and sent by that publisher; a
        state older than one already queued or sent is dropped. Returns False
        when the state was dropped.
        """
        if sequence is None:
            sequence = self.next_sequence()

        with self._seq_mutex:
            newest = max(
                self._published.get(entry_id, 0),
                self._pending.get(entry_id, (0, None))[0],
            )
            if sequence <= newest:
                logger.debug("Stale cache notification dropped", extra={"time_entry_id": entry_id})
                return False
            self._pending[entry_id] = (sequence, entry)
            if entry_id in self._publishing:
                return True
            self._publishing.add(entry_id)

        self._drain(entry_id)
        return True

    def _drain(self, entry_id: str) -> None:
        while True:
            with self._seq_mutex:
                item = self._pending.pop(entry_id, None)
                if item is None:
                    self._publishing.discard(entry_id)
                    return
                sequence, entry = item
                self._published[entry_id] = sequence
                self._published.move_to_end(entry_id)
                while len(self._published) > PUBLISHED_HISTORY:
                    self._published.popitem(last=False)

            try:
                self.notifier.notify(entry_id, entry)
            except Exception:
                logger.exception(
                    "Cache notification failed",
                    extra={"time_entry_id": entry_id, "notifier": type(self.notifier).__name__},
                )
