from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Iterable, Optional, Protocol

import redis

from timetrack.core.config import Settings, get_settings
from timetrack.services.entry_state_machine import EntrySnapshot

logger = logging.getLogger(__name__)

ACTIVE_TIMERS_KEY = "timers:active"
TIMER_KEY_PREFIX = "timer:"
INVALIDATION_PATTERNS = ("cache:*time*", "cache:*timer*", "cache:*report*")


class CacheNotifier(Protocol):
    def notify(self, entry_id: str, entry: EntrySnapshot) -> None:
        ...


class NullCacheNotifier:
    def notify(self, entry_id: str, entry: EntrySnapshot) -> None:
        return None


def timer_key(entry_id: str) -> str:
    return f"{TIMER_KEY_PREFIX}{entry_id}"


def serialize_entry(entry: EntrySnapshot) -> str:
    return json.dumps(asdict(entry), default=str, sort_keys=True)


class RedisCacheNotifier:
    """Mirrors timer state into Redis after a committed transition.

    Redis is never read back for accounting; it only feeds dashboards and
    response caches, so callers treat every failure here as non-fatal.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = 3600,
        invalidation_patterns: Iterable[str] = INVALIDATION_PATTERNS,
    ):
        self.client = client
        self.ttl_seconds = int(ttl_seconds)
        self.invalidation_patterns = tuple(invalidation_patterns)

    def notify(self, entry_id: str, entry: EntrySnapshot) -> None:
        key = timer_key(entry_id)

        pipe = self.client.pipeline(transaction=True)
        if entry.end_time is None:
            pipe.set(key, serialize_entry(entry), ex=self.ttl_seconds)
            pipe.sadd(ACTIVE_TIMERS_KEY, entry_id)
        else:
            pipe.delete(key)
            pipe.srem(ACTIVE_TIMERS_KEY, entry_id)
        pipe.execute()

        self._invalidate()

    def _invalidate(self) -> None:
        for pattern in self.invalidation_patterns:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if keys:
                self.client.delete(*keys)


def build_cache_notifier(settings: Optional[Settings] = None) -> CacheNotifier:
    settings = settings or get_settings()
    if not settings.redis_url:
        logger.info("REDIS_URL not set; cache notifications disabled")
        return NullCacheNotifier()

    client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.cache_socket_timeout_seconds,
        socket_connect_timeout=settings.cache_socket_timeout_seconds,
    )
    return RedisCacheNotifier(client, ttl_seconds=settings.cache_ttl_seconds)
