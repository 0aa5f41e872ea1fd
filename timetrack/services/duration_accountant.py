"""Pure duration arithmetic for time entries.

Wall clocks are not assumed monotonic, so every segment is clamped at zero
instead of letting a negative value leak into the accumulators. Nothing here
touches the database; callers pass "now" explicitly.
"""
from datetime import datetime, timezone
from typing import Optional


def to_utc(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_between(earlier: datetime, later: datetime) -> float:
    return (to_utc(later) - to_utc(earlier)).total_seconds()


def _clamped(seconds: float) -> float:
    return seconds if seconds > 0 else 0.0


def pause_segment(paused_at: Optional[datetime], now: datetime) -> float:
    if paused_at is None:
        return 0.0
    return _clamped(seconds_between(paused_at, now))


def resume_segment(last_resumed_at: Optional[datetime], now: datetime) -> float:
    if last_resumed_at is None:
        return 0.0
    return _clamped(seconds_between(last_resumed_at, now))


def final_duration(start_time: datetime, total_paused_duration: float, now: datetime) -> float:
    """Wall-clock span minus paused time."""
    span = _clamped(seconds_between(start_time, now))
    return _clamped(span - float(total_paused_duration or 0.0))


def active_elapsed(entry, now: datetime) -> float:
    """Active (non-paused) seconds of ``entry`` as observed at ``now``.

    Works on anything exposing the time entry attributes, so ORM rows and
    snapshots can both be passed in. A stopped entry reports its stored
    final duration.
    """
    if entry.end_time is not None:
        return _clamped(float(entry.duration or 0.0))

    paused = float(entry.total_paused_duration or 0.0)
    if entry.is_paused:
        paused += pause_segment(entry.paused_at, now)

    return final_duration(entry.start_time, paused, now)
