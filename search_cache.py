# search_cache.py
"""Small per-user TTL cache for contact search results."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Hashable, Optional, Tuple

CacheKey = Tuple[str, str, int, int]


class SearchCache:
    def __init__(self, ttl_seconds: int = 300, max_size: int = 200, clock=time.monotonic):
        self.ttl = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        # Insertion-ordered, so the first key is always the oldest entry
        self._entries: Dict[CacheKey, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(user_id: str, query: str, limit: int, offset: int = 0) -> CacheKey:
        return (user_id, (query or "").strip().lower(), int(limit), int(offset))

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            expires, value = hit
            if expires <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: CacheKey, value: Any) -> None:
        if self.ttl <= 0 or self.max_size <= 0:
            return
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries.pop(key, None)
            self._entries[key] = (now + self.ttl, value)
            while len(self._entries) > self.max_size:
                del self._entries[next(iter(self._entries))]

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (expires, _) in self._entries.items() if expires <= now]
        for k in expired:
            del self._entries[k]

    def clear_user_cache(self, user_id: Hashable) -> int:
        """Drop every entry belonging to user_id; returns how many were removed."""
        with self._lock:
            stale = [k for k in self._entries if k[0] == user_id]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
