"""Redis-backed lock stores.

Each primitive is a Lua script so that the check and the write happen in one
step on the server. A successful acquire also bumps ``<key>:fence``, which
gives every new holder of ``key`` a larger fencing token than the last one.
"""

from typing import Optional

import redis
from redis.asyncio import Redis as AsyncRedis

from ..exceptions import StoreUnavailable
from ..models import AcquireReply
from .base import AsyncStore, Store


ACQUIRE_SCRIPT = """
if redis.call('set', KEYS[1], ARGV[1], 'NX', 'PX', ARGV[2]) then
    return redis.call('incr', KEYS[2])
end
return 0
"""

RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


def fence_key(key: str) -> str:
    return f"{key}:fence"


def _acquire_reply(value) -> AcquireReply:
    fence = int(value or 0)
    if fence > 0:
        return AcquireReply(True, fence)
    return AcquireReply(False)


class RedisStore(Store):
    """Lock store on a single Redis server."""

    def __init__(self, client: redis.Redis, name: Optional[str] = None):
        self.client = client
        self.name = name or "redis"
        self._acquire = client.register_script(ACQUIRE_SCRIPT)
        self._release = client.register_script(RELEASE_SCRIPT)
        self._extend = client.register_script(EXTEND_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 1.0) -> "RedisStore":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, name=url)

    def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        try:
            value = self._acquire(keys=[key, fence_key(key)], args=[token, int(ttl_ms)])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: acquire failed: {e}") from e
        return _acquire_reply(value)

    def release_if_matches(self, key: str, token: str) -> bool:
        try:
            value = self._release(keys=[key], args=[token])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: release failed: {e}") from e
        return int(value or 0) == 1

    def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        try:
            value = self._extend(keys=[key], args=[token, int(ttl_ms)])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: extend failed: {e}") from e
        return int(value or 0) == 1

    def close(self) -> None:
        self.client.close()


class AsyncRedisStore(AsyncStore):
    """Lock store on a single Redis server, asyncio client."""

    def __init__(self, client: AsyncRedis, name: Optional[str] = None):
        self.client = client
        self.name = name or "redis"
        self._acquire = client.register_script(ACQUIRE_SCRIPT)
        self._release = client.register_script(RELEASE_SCRIPT)
        self._extend = client.register_script(EXTEND_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 1.0) -> "AsyncRedisStore":
        client = AsyncRedis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, name=url)

    async def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        try:
            value = await self._acquire(keys=[key, fence_key(key)], args=[token, int(ttl_ms)])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: acquire failed: {e}") from e
        return _acquire_reply(value)

    async def release_if_matches(self, key: str, token: str) -> bool:
        try:
            value = await self._release(keys=[key], args=[token])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: release failed: {e}") from e
        return int(value or 0) == 1

    async def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        try:
            value = await self._extend(keys=[key], args=[token, int(ttl_ms)])
        except redis.RedisError as e:
            raise StoreUnavailable(f"{self.name}: extend failed: {e}") from e
        return int(value or 0) == 1

    async def close(self) -> None:
        await self.client.aclose()
