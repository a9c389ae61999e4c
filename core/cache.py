"""
In-process TTL cache.

Used by CachedDataSource (services/sources/cached.py) to keep upstream
results for a while instead of refetching them on every stream.
"""

import asyncio
import time
from typing import Any, Callable, Optional


class MemoryCache:
    """Async key/value cache with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: float):
        async with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    async def delete(self, key: str):
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
