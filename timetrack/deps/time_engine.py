from typing import Optional

from sqlalchemy.orm import Session

from timetrack import database
from timetrack.core.config import get_settings
from timetrack.services.cache_notifier import build_cache_notifier
from timetrack.services.time_engine import TimeEngine

_engine: Optional[TimeEngine] = None


def _session() -> Session:
    database.configure_database()
    return database.SessionLocal()


def build_time_engine() -> TimeEngine:
    settings = get_settings()
    return TimeEngine(
        _session,
        notifier=build_cache_notifier(settings),
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )


def get_time_engine() -> TimeEngine:
    # One engine per process: its entry lock registry must be shared by all workers.
    global _engine
    if _engine is None:
        _engine = build_time_engine()
    return _engine
