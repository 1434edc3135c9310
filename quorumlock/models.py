"""quorumlock data models."""

import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .exceptions import StaleFencingToken


@dataclass(frozen=True)
class AcquireReply:
    """A single store's answer to a conditional set."""
    acquired: bool
    fencing_token: Optional[int] = None

    def __bool__(self) -> bool:
        return self.acquired


@dataclass(frozen=True)
class Lock:
    """A lock held on a quorum of stores.

    ``validity_ms`` is the requested lease minus the time spent acquiring it
    and the clock drift margin. ``acquired_at`` is a ``time.monotonic()``
    reading, so the lease is only meaningful inside the process that took it.
    """
    name: str
    token: str
    validity_ms: int
    acquired_at: float
    fencing_token: Optional[int] = None

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.validity_ms / 1000.0

    def remaining_ms(self, now: float = None) -> int:
        """Milliseconds left on the lease, never negative."""
        if now is None:
            now = time.monotonic()
        return max(0, int((self.expires_at - now) * 1000))

    def is_valid(self, now: float = None) -> bool:
        if now is None:
            now = time.monotonic()
        return now < self.expires_at


class FencingValidator:
    """Accepts writes only when their fencing token moves forward.

    Meant for the owner of a downstream resource: remember the highest token
    seen per resource and reject anything that is not strictly greater.
    """

    def __init__(self):
        self._mu = threading.Lock()
        self._last: Dict[str, int] = {}

    def last_seen(self, resource: str) -> Optional[int]:
        with self._mu:
            return self._last.get(resource)

    def check(self, resource: str, fencing_token: int) -> None:
        """Record ``fencing_token`` for ``resource`` or raise StaleFencingToken."""
        if fencing_token is None:
            raise StaleFencingToken(
                f"Write to '{resource}' carries no fencing token",
                resource=resource,
            )
        with self._mu:
            last = self._last.get(resource)
            if last is not None and fencing_token <= last:
                raise StaleFencingToken(
                    f"Fencing token {fencing_token} for '{resource}' is not newer than {last}",
                    resource=resource,
                    token=fencing_token,
                    last_seen=last,
                )
            self._last[resource] = fencing_token
