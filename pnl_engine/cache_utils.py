"""
Time-bounded in-memory cache for source fetches.

A TTLCache is an explicit object handed to whichever call needs it
(reconcile_user, the fetchers) instead of module-level state, so each
caller (and each test) controls its own cache lifetime.
"""

import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """
    Key/value store whose entries expire ``ttl_seconds`` after being set.

    Args:
        ttl_seconds: Entry lifetime in seconds
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, computing and storing it on a miss."""
        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            value = compute()
            self.set(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        return len(self._entries)
