"""Short-lived key/value cache used by the tenant directory.

Deployments point ``TENANT_CACHE_URL`` at Redis so every worker process sees
the same invalidations. Without a URL the cache lives in-process, which is
what tests and single-process development use.
"""

import threading
import time
from typing import Optional, Protocol

import redis

from core.config import settings


class KeyValueCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, *keys: str) -> None: ...


class MemoryCache:
    """Thread-safe TTL cache with the subset of the Redis API we use."""

    def __init__(self):
        self._store: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                self._store.pop(key, None)
                return None
            return value

    def setex(self, key: str, ttl: int, value: str) -> None:
        with self._lock:
            self._store[key] = (time.monotonic() + int(ttl), value)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


def build_cache(url: Optional[str] = None) -> KeyValueCache:
    url = settings.TENANT_CACHE_URL if url is None else url
    if url and not settings.TESTING:
        return redis.from_url(url, decode_responses=True)
    return MemoryCache()
