"""Lock store adapters."""

from .base import AsyncStore, Store
from .http_store import AsyncHttpStore, HttpStore
from .memory import AsyncMemoryStore, MemoryStore
from .redis_store import AsyncRedisStore, RedisStore

__all__ = [
    "Store",
    "AsyncStore",
    "MemoryStore",
    "AsyncMemoryStore",
    "RedisStore",
    "AsyncRedisStore",
    "HttpStore",
    "AsyncHttpStore",
]
