"""Short-lived availability cache shared by all searches."""
import threading
import time
from typing import Any, Callable, Dict, Hashable, NamedTuple, Tuple

DEFAULT_TTL_SECONDS = 300.0


class CacheKey(NamedTuple):
    """(binding id, checker kind, item identity)."""
    server_id: str
    checker: str
    identity: Hashable


class AvailabilityCache:
    """In-memory key/value store with a fixed freshness window.

    Expiry is lazy: stale entries are ignored on read and overwritten on the
    next put, never swept. Reads and writes take a lock so the cache can be
    shared between concurrent aggregations and worker threads; a race between
    two writers on the same key keeps the last write.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Tuple[Any, bool]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None, False
        inserted_at, value = entry
        if self.clock() - inserted_at >= self.ttl_seconds:
            return None, False
        return value, True

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self.clock(), value)

    def discard(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
