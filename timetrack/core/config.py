import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_URL = "postgresql://localhost/timetrack"


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_str(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    lock_timeout_seconds: float
    redis_url: Optional[str]
    cache_ttl_seconds: int
    cache_socket_timeout_seconds: float


def get_settings() -> Settings:
    """Read settings from the environment on every call.

    Nothing is cached so tests can flip environment variables between cases.
    """
    lock_timeout = _env_float("LOCK_TIMEOUT_SECONDS", 5.0)
    if lock_timeout <= 0:
        lock_timeout = 5.0

    socket_timeout = _env_float("CACHE_SOCKET_TIMEOUT_SECONDS", 1.0)
    if socket_timeout <= 0:
        socket_timeout = 1.0

    return Settings(
        database_url=_env_str("DATABASE_URL") or DEFAULT_DATABASE_URL,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        lock_timeout_seconds=lock_timeout,
        redis_url=_env_str("REDIS_URL"),
        cache_ttl_seconds=max(1, _env_int("CACHE_TTL_SECONDS", 3600)),
        cache_socket_timeout_seconds=socket_timeout,
    )
