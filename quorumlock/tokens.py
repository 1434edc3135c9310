"""Acquisition token generation."""

import itertools
import secrets
import threading
import time
from typing import Optional

_counter = itertools.count(1)
_counter_mu = threading.Lock()


class TokenGenerator:
    """Builds tokens that are unique per acquisition attempt.

    A token is ``<node>.<nonce>-<time_ns>-<counter>``. The counter is shared
    by every generator in the process, so two tokens from one process never
    collide even when the clock does not move. The node id (random unless
    given) and the per-generator nonce keep processes and hosts apart, also
    when several of them are configured with the same node id.
    """

    def __init__(self, node_id: Optional[str] = None):
        if node_id is not None and not node_id:
            raise ValueError("node_id must be non-empty when given")
        self.node_id = node_id or secrets.token_hex(8)
        self.prefix = f"{self.node_id}.{secrets.token_hex(4)}"

    def next(self) -> str:
        with _counter_mu:
            count = next(_counter)
        return f"{self.prefix}-{time.time_ns():x}-{count:x}"

    __call__ = next
