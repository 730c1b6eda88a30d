"""
Process-local record of recently sent chat messages.

Used to suppress the same Slack message being sent twice in a short
window. The cache is bounded and every key expires after a fixed TTL.
"""

import threading
import time
from typing import Any, Callable, List, Optional

from cachetools import TTLCache


class MessageTracker:
    """
    Thread-safe TTL cache keyed by message hash.

    - Bounded: the least recently used key is evicted past max_size.
    - Keys expire ttl_seconds after they were set.
    - Best effort only; losing an entry can cause a duplicate message.
    """

    def __init__(
        self,
        max_size: int = 50000,
        ttl_seconds: float = 180,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._cache: TTLCache = TTLCache(maxsize=max_size, ttl=ttl_seconds, timer=clock)

    @classmethod
    def from_settings(cls, settings) -> "MessageTracker":
        return cls(
            max_size=settings.message_tracker_max_size,
            ttl_seconds=settings.message_tracker_ttl_seconds,
        )

    def get(self, key: str) -> Optional[Any]:
        """Value stored under `key`, or None when missing or expired."""
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any = True) -> None:
        with self._lock:
            self._cache[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def keys(self) -> List[str]:
        """Return a copy of the live keys."""
        with self._lock:
            self._cache.expire()
            return list(self._cache)

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
