from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from timetrack.core.errors import AlreadyStopped, InvalidState, InvalidTransition
from timetrack.services import duration_accountant as accountant

logger = logging.getLogger(__name__)


class EntryState(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class EntrySnapshot:
    id: str
    task_id: str
    start_time: datetime
    end_time: Optional[datetime]
    is_paused: bool
    last_resumed_at: Optional[datetime]
    paused_at: Optional[datetime]
    total_paused_duration: float
    duration: Optional[float]
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransitionResult:
    entry: EntrySnapshot
    changed: bool


def state_of(entry: EntrySnapshot) -> EntryState:
    """Derive the state of a stored entry, rejecting rows that break invariants."""
    if entry.end_time is not None:
        return EntryState.STOPPED

    if entry.total_paused_duration is None or entry.total_paused_duration < 0:
        raise InvalidState(f"Time entry {entry.id} has a negative paused total")

    if entry.is_paused:
        if entry.paused_at is None:
            raise InvalidState(f"Time entry {entry.id} is paused without a pause timestamp")
        if entry.last_resumed_at is not None:
            raise InvalidState(f"Time entry {entry.id} is paused but has a resume timestamp")
        return EntryState.PAUSED

    if entry.last_resumed_at is None:
        raise InvalidState(f"Time entry {entry.id} is running without a resume timestamp")
    if entry.paused_at is not None:
        raise InvalidState(f"Time entry {entry.id} is running but has a pause timestamp")
    return EntryState.RUNNING


def start(entry_id: str, task_id: str, now: datetime) -> EntrySnapshot:
    return EntrySnapshot(
        id=entry_id,
        task_id=task_id,
        start_time=now,
        end_time=None,
        is_paused=False,
        last_resumed_at=now,
        paused_at=None,
        total_paused_duration=0.0,
        duration=0.0,
    )


def pause(entry: EntrySnapshot, now: datetime) -> TransitionResult:
    state = state_of(entry)
    if state is EntryState.STOPPED:
        raise InvalidTransition("Cannot pause a stopped entry")
    if state is EntryState.PAUSED:
        logger.debug("Pause ignored; entry already paused", extra={"time_entry_id": entry.id})
        return TransitionResult(entry=entry, changed=False)

    segment = accountant.resume_segment(entry.last_resumed_at, now)
    paused = replace(
        entry,
        is_paused=True,
        paused_at=now,
        last_resumed_at=None,
        duration=float(entry.duration or 0.0) + segment,
    )
    return TransitionResult(entry=paused, changed=True)


def resume(entry: EntrySnapshot, now: datetime) -> TransitionResult:
    state = state_of(entry)
    if state is EntryState.STOPPED:
        raise InvalidTransition("Cannot resume a stopped entry")
    if state is EntryState.RUNNING:
        logger.debug("Resume ignored; entry already running", extra={"time_entry_id": entry.id})
        return TransitionResult(entry=entry, changed=False)

    segment = accountant.pause_segment(entry.paused_at, now)
    resumed = replace(
        entry,
        is_paused=False,
        last_resumed_at=now,
        paused_at=None,
        total_paused_duration=float(entry.total_paused_duration) + segment,
    )
    return TransitionResult(entry=resumed, changed=True)


def stop(entry: EntrySnapshot, now: datetime) -> TransitionResult:
    """Stop an active entry.

    The final duration needs only ``start_time`` and the paused total, so a
    running row with a missing resume timestamp can still be stopped. A paused
    row must still carry its pause timestamp, or the open pause is unknown.
    """
    if entry.end_time is not None:
        raise AlreadyStopped("Active time entry not found or already stopped")
    if entry.total_paused_duration is None or entry.total_paused_duration < 0:
        raise InvalidState(f"Time entry {entry.id} has a negative paused total")
    if entry.is_paused and entry.paused_at is None:
        raise InvalidState(f"Time entry {entry.id} is paused without a pause timestamp")

    total_paused = float(entry.total_paused_duration)
    if entry.is_paused:
        # Close the open pause segment so span == duration + paused.
        total_paused += accountant.pause_segment(entry.paused_at, now)

    stopped = replace(
        entry,
        end_time=now,
        is_paused=False,
        last_resumed_at=None,
        paused_at=None,
        total_paused_duration=total_paused,
        duration=accountant.final_duration(entry.start_time, total_paused, now),
    )
    return TransitionResult(entry=stopped, changed=True)
