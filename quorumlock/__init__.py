"""quorumlock - Redlock-style distributed locks over independent stores."""

from .exceptions import (
    QuorumLockError,
    ValidationError,
    ConfigurationError,
    StoreError,
    StoreUnavailable,
    AuthenticationError,
    LockError,
    AcquireFailed,
    AcquireTimeout,
    AcquireCancelled,
    ClockDriftExceeded,
    ReleaseFailed,
    ExtendFailed,
    LockExpired,
    StaleFencingToken,
)
from .log import configure_logging
from .manager import AsyncRedlock, Redlock, quorum_for
from .models import AcquireReply, FencingValidator, Lock
from .settings import ManagerSettings, build_stores
from .stores import (
    AsyncStore,
    Store,
    MemoryStore,
    AsyncMemoryStore,
    RedisStore,
    AsyncRedisStore,
    HttpStore,
    AsyncHttpStore,
)
from .tokens import TokenGenerator

__version__ = "1.0.0"
__all__ = [
    "Redlock",
    "AsyncRedlock",
    "quorum_for",
    "Lock",
    "AcquireReply",
    "FencingValidator",
    "TokenGenerator",
    "ManagerSettings",
    "build_stores",
    "configure_logging",
    "Store",
    "AsyncStore",
    "MemoryStore",
    "AsyncMemoryStore",
    "RedisStore",
    "AsyncRedisStore",
    "HttpStore",
    "AsyncHttpStore",
    "QuorumLockError",
    "ValidationError",
    "ConfigurationError",
    "StoreError",
    "StoreUnavailable",
    "AuthenticationError",
    "LockError",
    "AcquireFailed",
    "AcquireTimeout",
    "AcquireCancelled",
    "ClockDriftExceeded",
    "ReleaseFailed",
    "ExtendFailed",
    "LockExpired",
    "StaleFencingToken",
]
