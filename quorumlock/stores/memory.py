"""In-process lock store.

Useful for tests and for running several managers inside one process. All
operations run under a single ``threading.Lock``, which makes each of them
atomic with respect to every other caller of the same store.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..models import AcquireReply
from .base import AsyncStore, Store


@dataclass
class _Entry:
    token: str
    expires_at: float


class _MemoryTable:
    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self._mu = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._fences: Dict[str, int] = {}

    def _live(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and now >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def acquire(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        with self._mu:
            now = self._clock()
            if self._live(key, now) is not None:
                return AcquireReply(False)
            self._entries[key] = _Entry(token, now + ttl_ms / 1000.0)
            fence = self._fences.get(key, 0) + 1
            self._fences[key] = fence
            return AcquireReply(True, fence)

    def release(self, key: str, token: str) -> bool:
        with self._mu:
            entry = self._live(key, self._clock())
            if entry is None or entry.token != token:
                return False
            del self._entries[key]
            return True

    def extend(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._mu:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None or entry.token != token:
                return False
            entry.expires_at = now + ttl_ms / 1000.0
            return True

    def holder(self, key: str) -> Optional[str]:
        with self._mu:
            entry = self._live(key, self._clock())
            return entry.token if entry else None


class MemoryStore(Store):
    """Dict-backed store with TTL expiry and per-key fencing counters."""

    def __init__(self, name: str = "memory", clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._table = _MemoryTable(clock)

    def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        return self._table.acquire(key, token, ttl_ms)

    def release_if_matches(self, key: str, token: str) -> bool:
        return self._table.release(key, token)

    def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        return self._table.extend(key, token, ttl_ms)

    def holder(self, key: str) -> Optional[str]:
        """Token currently stored under ``key``, if any."""
        return self._table.holder(key)


class AsyncMemoryStore(AsyncStore):
    """asyncio flavour of :class:`MemoryStore`."""

    def __init__(self, name: str = "memory", clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._table = _MemoryTable(clock)

    async def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        return self._table.acquire(key, token, ttl_ms)

    async def release_if_matches(self, key: str, token: str) -> bool:
        return self._table.release(key, token)

    async def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        return self._table.extend(key, token, ttl_ms)

    def holder(self, key: str) -> Optional[str]:
        return self._table.holder(key)
