"""Store contract the lock manager relies on.

Every replica must offer atomic check-then-act primitives. Failing to
answer (by raising ``StoreError`` or anything else) is never a safety
problem: the manager counts it as a missing vote.
"""

from abc import ABC, abstractmethod

from ..models import AcquireReply


class Store(ABC):
    """Blocking lock store."""

    name: str = "store"

    def validate_key(self, key: str) -> None:
        """Raise ValidationError if this store cannot hold ``key``."""

    @abstractmethod
    def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        """Set ``key = token`` with a TTL only if ``key`` does not exist."""

    @abstractmethod
    def release_if_matches(self, key: str, token: str) -> bool:
        """Delete ``key`` only if it currently holds ``token``."""

    @abstractmethod
    def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        """Reset the TTL of ``key`` only if it currently holds ``token``."""

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class AsyncStore(ABC):
    """asyncio lock store."""

    name: str = "store"

    def validate_key(self, key: str) -> None:
        """Raise ValidationError if this store cannot hold ``key``."""

    @abstractmethod
    async def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        """Set ``key = token`` with a TTL only if ``key`` does not exist."""

    @abstractmethod
    async def release_if_matches(self, key: str, token: str) -> bool:
        """Delete ``key`` only if it currently holds ``token``."""

    @abstractmethod
    async def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        """Reset the TTL of ``key`` only if it currently holds ``token``."""

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
