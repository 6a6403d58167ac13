"""In-memory response cache with per-entry expiry."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class TTLCache:
    """Key/value cache whose entries expire after a TTL.

    Owned by whoever constructs it; the API app keeps one on its state.
    The clock is injectable so tests can advance time.
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        self._entries[key] = (self._clock() + ttl, value)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix. Returns the number removed."""
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Evict expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Cache cleanup evicted %d entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


async def run_periodic_cleanup(cache: TTLCache, interval: float) -> None:
    """Call ``cache.cleanup()`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        cache.cleanup()
