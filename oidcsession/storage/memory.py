from __future__ import annotations

import copy
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from oidcsession.logging import get_logger


class MemoryCache:
    """In-process TTL map used when the host supplies no cache backend.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the cache. Expired entries are swept from ``set`` at
    most once per ``sweep_interval_seconds``, so records that are never read
    again (abandoned login attempts) are still reclaimed.
    """

    DEFAULT_SWEEP_INTERVAL = 60.0  # seconds

    def __init__(
        self,
        default_ttl_seconds: Optional[int] = None,
        *,
        segment: str = "",
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self.logger = get_logger(__name__)
        self.default_ttl_seconds = default_ttl_seconds
        self.segment = segment
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + sweep_interval_seconds

    def _key(self, key: str) -> str:
        return f"{self.segment}:{key}" if self.segment else key

    async def get(self, key: str, ctx: Any = None) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(self._key(key))
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= now:
                self._entries.pop(self._key(key), None)
                return None
            return copy.deepcopy(value)

    async def set(
        self, key: str, value: Any, ttl: Optional[int] = None, ctx: Any = None
    ) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._next_sweep = now + self.sweep_interval_seconds
            self.cleanup_expired()
        ttl = ttl if ttl is not None else self.default_ttl_seconds
        expires_at = now + ttl if ttl else None
        with self._lock:
            self._entries[self._key(key)] = (copy.deepcopy(value), expires_at)

    async def drop(self, key: str, ctx: Any = None) -> None:
        with self._lock:
            self._entries.pop(self._key(key), None)

    def cleanup_expired(self) -> int:
        """Evict expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, (_, expires_at) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                self._entries.pop(key, None)
        if expired:
            self.logger.info("memory_cache_cleanup", cleaned=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
