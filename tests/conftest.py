from __future__ import annotations

import asyncio
import time
from collections import Counter

import pytest

from quorumlock import AsyncMemoryStore, AsyncStore, MemoryStore, Store, StoreUnavailable


class FlakyStore(Store):
    """Wraps a MemoryStore; raises StoreUnavailable while ``down``."""

    def __init__(self, name: str, down: bool = False, delay: float = 0.0, error: Exception = None):
        self.name = name
        self.inner = MemoryStore(name)
        self.down = down
        self.delay = delay
        self.error = error
        self.calls = Counter()

    def _maybe_fail(self, op: str) -> None:
        self.calls[op] += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.down:
            raise StoreUnavailable(f"{self.name} is down")

    def acquire_if_absent(self, key, token, ttl_ms):
        self._maybe_fail("acquire")
        return self.inner.acquire_if_absent(key, token, ttl_ms)

    def release_if_matches(self, key, token):
        self._maybe_fail("release")
        return self.inner.release_if_matches(key, token)

    def extend_if_matches(self, key, token, ttl_ms):
        self._maybe_fail("extend")
        return self.inner.extend_if_matches(key, token, ttl_ms)

    def holder(self, key):
        return self.inner.holder(key)


class AsyncFlakyStore(AsyncStore):
    """Async twin of FlakyStore. ``reply_delay`` applies after the write."""

    def __init__(self, name: str, down: bool = False, reply_delay: float = 0.0):
        self.name = name
        self.inner = AsyncMemoryStore(name)
        self.down = down
        self.reply_delay = reply_delay
        self.calls = Counter()

    async def _run(self, op: str, coro):
        self.calls[op] += 1
        if self.down:
            coro.close()
            raise StoreUnavailable(f"{self.name} is down")
        result = await coro
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)
        return result

    async def acquire_if_absent(self, key, token, ttl_ms):
        return await self._run("acquire", self.inner.acquire_if_absent(key, token, ttl_ms))

    async def release_if_matches(self, key, token):
        return await self._run("release", self.inner.release_if_matches(key, token))

    async def extend_if_matches(self, key, token, ttl_ms):
        return await self._run("extend", self.inner.extend_if_matches(key, token, ttl_ms))

    def holder(self, key):
        return self.inner.holder(key)


@pytest.fixture
def healthy_stores():
    return [FlakyStore(f"s{i}") for i in range(3)]


@pytest.fixture
def fast_options():
    return dict(retry_delay_ms=0, retry_jitter_ms=0, retry_count=3)
