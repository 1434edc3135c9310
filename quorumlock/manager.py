"""Quorum lock managers.

A lock on ``name`` is held when a majority of independent stores accepted
the same token fast enough that the lease, minus the time spent acquiring it
and a clock drift margin, is still positive. Mutual exclusion comes from the
stores' atomic conditional writes; nothing in this module shares mutable
state between calls.
"""

import asyncio
import dataclasses
import logging
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from contextlib import asynccontextmanager, contextmanager
from typing import Callable, List, Optional, Sequence

from .exceptions import (
    AcquireCancelled,
    AcquireFailed,
    AcquireTimeout,
    ClockDriftExceeded,
    ConfigurationError,
    ExtendFailed,
    LockExpired,
    ReleaseFailed,
    StoreError,
    ValidationError,
)
from .models import Lock
from .settings import ManagerSettings, build_stores
from .stores.base import AsyncStore, Store
from .tokens import TokenGenerator

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT = 10
DEFAULT_RETRY_DELAY_MS = 200
DEFAULT_RETRY_JITTER_MS = 100
DEFAULT_CLOCK_DRIFT_FACTOR = 0.01
DEFAULT_CONNECT_TIMEOUT = 1.0
DEFAULT_VALIDITY_MS = 1000
CANCEL_POLL_INTERVAL = 0.02  # seconds


def quorum_for(n: int) -> int:
    """Smallest majority of ``n`` stores."""
    if n < 1:
        raise ConfigurationError("At least one store is required")
    return n // 2 + 1


class _Tally:
    """Votes collected from one round of store calls."""

    def __init__(self, total: int, quorum: int):
        self.total = total
        self.quorum = quorum
        self.successes = 0
        self.failures = 0
        self.fences: List[int] = []

    def add(self, store, future) -> None:
        try:
            reply = future.result()
        except StoreError as e:
            logger.debug("%r did not vote: %s", store, e)
            self.failures += 1
            return
        except Exception:
            logger.warning("%r raised an unexpected error", store, exc_info=True)
            self.failures += 1
            return
        if reply:
            self.successes += 1
            fence = getattr(reply, "fencing_token", None)
            if fence is not None:
                self.fences.append(fence)
        else:
            self.failures += 1

    @property
    def reached(self) -> bool:
        return self.successes >= self.quorum

    @property
    def hopeless(self) -> bool:
        return self.failures > self.total - self.quorum

    def decided(self, stop_on_quorum: bool, stop_on_failure: bool) -> bool:
        return (stop_on_quorum and self.reached) or (stop_on_failure and self.hopeless)

    @property
    def fencing_token(self) -> Optional[int]:
        return max(self.fences) if self.fences else None


class _RedlockBase:
    def __init__(
        self,
        stores: Sequence,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        retry_jitter_ms: int = DEFAULT_RETRY_JITTER_MS,
        clock_drift_factor: float = DEFAULT_CLOCK_DRIFT_FACTOR,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        default_validity_ms: int = DEFAULT_VALIDITY_MS,
        node_id: str = None,
    ):
        """Initialize the manager.

        Args:
            stores: Independent lock stores, ideally an odd number of them
            retry_count: Attempts per ``lock()`` call
            retry_delay_ms: Base wait between attempts
            retry_jitter_ms: Upper bound of the random extra wait
            clock_drift_factor: Fraction of the validity reserved for clock drift
            connect_timeout: Seconds to wait for a round of store replies
            default_validity_ms: Lease length used when a call does not give one
            node_id: Token prefix; random when omitted
        """
        self.stores = tuple(stores)
        self.quorum = quorum_for(len(self.stores))
        if retry_count < 1:
            raise ConfigurationError("retry_count must be at least 1")
        if retry_delay_ms < 0 or retry_jitter_ms < 0:
            raise ConfigurationError("retry delays cannot be negative")
        if not 0 <= clock_drift_factor < 1:
            raise ConfigurationError("clock_drift_factor must be in [0, 1)")
        if connect_timeout <= 0:
            raise ConfigurationError("connect_timeout must be positive")
        if default_validity_ms <= 0:
            raise ConfigurationError("default_validity_ms must be positive")
        self.retry_count = retry_count
        self.retry_delay_ms = retry_delay_ms
        self.retry_jitter_ms = retry_jitter_ms
        self.clock_drift_factor = clock_drift_factor
        self.connect_timeout = connect_timeout
        self.default_validity_ms = default_validity_ms
        self._tokens = TokenGenerator(node_id)

    @staticmethod
    def _settings_kwargs(settings: ManagerSettings) -> dict:
        return dict(
            retry_count=settings.retry_count,
            retry_delay_ms=settings.retry_delay_ms,
            retry_jitter_ms=settings.retry_jitter_ms,
            clock_drift_factor=settings.clock_drift_factor,
            connect_timeout=settings.connect_timeout,
            default_validity_ms=settings.default_validity_ms,
            node_id=settings.node_id,
        )

    def _check_name(self, name: str) -> None:
        if not name:
            raise ValidationError("Lock name must be non-empty")
        for store in self.stores:
            store.validate_key(name)

    def _check_request(self, name: str, validity_ms: Optional[int]) -> int:
        self._check_name(name)
        if validity_ms is None:
            return self.default_validity_ms
        if validity_ms <= 0:
            raise ValidationError("Validity must be a positive number of milliseconds")
        return int(validity_ms)

    def _retry_plan(self, retry_count: Optional[int], retry_delay_ms: Optional[int]):
        attempts = self.retry_count if retry_count is None else retry_count
        delay_ms = self.retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        if attempts < 1:
            raise ValidationError("retry_count must be at least 1")
        if delay_ms < 0:
            raise ValidationError("retry_delay_ms cannot be negative")
        return attempts, delay_ms

    def _remaining_ms(self, validity_ms: int, elapsed: float) -> float:
        """Validity left once acquisition time and drift margin are paid for."""
        drift_ms = validity_ms * self.clock_drift_factor
        return validity_ms - elapsed * 1000.0 - drift_ms

    def _backoff(self, delay_ms: int) -> float:
        return (delay_ms + random.uniform(0, self.retry_jitter_ms)) / 1000.0

    def _budget(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.connect_timeout
        return max(0.0, min(self.connect_timeout, deadline - time.monotonic()))

    def _drift_exceeded(self, name: str, elapsed: float, validity_ms: int) -> ClockDriftExceeded:
        elapsed_ms = elapsed * 1000.0
        logger.warning(
            "Acquiring '%s' took %.1fms, no validity left out of %dms", name, elapsed_ms, validity_ms
        )
        return ClockDriftExceeded(
            f"Acquiring lock '{name}' took {elapsed_ms:.1f}ms, longer than its {validity_ms}ms validity allows",
            name=name,
            elapsed_ms=elapsed_ms,
        )


class Redlock(_RedlockBase):
    """Quorum lock manager over blocking stores.

    Store calls of one round run concurrently on a worker pool owned by the
    manager; ``connect_timeout`` bounds how long a round waits for replies.
    """

    def __init__(self, stores: Sequence[Store], max_workers: int = None, **options):
        super().__init__(stores, **options)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or max(8, 4 * len(self.stores)),
            thread_name_prefix="quorumlock",
        )

    @classmethod
    def from_settings(cls, settings: ManagerSettings, **options) -> "Redlock":
        stores = build_stores(settings)
        return cls(stores, **{**cls._settings_kwargs(settings), **options})

    def _fan_out(
        self,
        call: Callable[[Store], object],
        timeout: float,
        stop_on_quorum: bool = True,
        stop_on_failure: bool = False,
        cancel: threading.Event = None,
    ) -> _Tally:
        tally = _Tally(len(self.stores), self.quorum)
        futures = {self._executor.submit(call, store): store for store in self.stores}
        pending = set(futures)
        deadline = time.monotonic() + timeout
        try:
            while pending and not tally.decided(stop_on_quorum, stop_on_failure):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if cancel is not None:
                    if cancel.is_set():
                        break
                    remaining = min(remaining, CANCEL_POLL_INTERVAL)
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    tally.add(futures[future], future)
        finally:
            for future in pending:
                future.cancel()
        return tally

    def _release_all(self, name: str, token: str) -> _Tally:
        # Every store, not only the ones that said yes: a reply may have been lost.
        return self._fan_out(
            lambda store: store.release_if_matches(name, token),
            self.connect_timeout,
            stop_on_quorum=False,
        )

    def lock(
        self,
        name: str,
        validity_ms: int = None,
        *,
        retry_count: int = None,
        retry_delay_ms: int = None,
        timeout: float = None,
        cancel: threading.Event = None,
    ) -> Lock:
        """Acquire a lock on ``name``.

        Args:
            name: Resource name
            validity_ms: Requested lease in milliseconds
            retry_count: Overrides the manager's attempt count
            retry_delay_ms: Overrides the manager's base retry delay
            timeout: Overall deadline for the call, in seconds
            cancel: Event that aborts the call when set; it is polled while
                waiting for store replies and during the retry wait, and the
                attempt in flight is released before the call gives up

        Returns:
            The acquired Lock

        Raises:
            AcquireFailed: quorum was not reached in any attempt
            AcquireTimeout: ``timeout`` passed first
            AcquireCancelled: ``cancel`` was set
            ClockDriftExceeded: an attempt left no validity
        """
        validity_ms = self._check_request(name, validity_ms)
        attempts, delay_ms = self._retry_plan(retry_count, retry_delay_ms)
        deadline = None if timeout is None else time.monotonic() + timeout

        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise AcquireCancelled(
                    f"Acquisition of lock '{name}' was cancelled", name=name, attempts=attempt - 1
                )
            token = self._tokens.next()
            start = time.monotonic()
            tally = self._fan_out(
                lambda store: store.acquire_if_absent(name, token, validity_ms),
                self._budget(deadline),
                cancel=cancel,
            )
            end = time.monotonic()
            elapsed = end - start
            remaining = self._remaining_ms(validity_ms, elapsed)

            if cancel is not None and cancel.is_set():
                self._release_all(name, token)
                raise AcquireCancelled(
                    f"Acquisition of lock '{name}' was cancelled", name=name, attempts=attempt
                )
            if tally.reached and remaining > 0:
                lock = Lock(name, token, int(remaining), end, tally.fencing_token)
                logger.info(
                    "Acquired '%s' on %d/%d stores (attempt %d, validity %dms)",
                    name, tally.successes, len(self.stores), attempt, lock.validity_ms,
                )
                return lock

            logger.debug(
                "Attempt %d for '%s' failed: %d/%d votes in %.1fms",
                attempt, name, tally.successes, self.quorum, elapsed * 1000.0,
            )
            self._release_all(name, token)
            if remaining <= 0:
                raise self._drift_exceeded(name, elapsed, validity_ms)
            if attempt == attempts:
                break

            pause = self._backoff(delay_ms)
            if deadline is not None and time.monotonic() + pause >= deadline:
                raise AcquireTimeout(
                    f"Deadline passed while acquiring lock '{name}'", name=name, attempts=attempt
                )
            if cancel is not None:
                if cancel.wait(pause):
                    raise AcquireCancelled(
                        f"Acquisition of lock '{name}' was cancelled", name=name, attempts=attempt
                    )
            else:
                time.sleep(pause)

        raise AcquireFailed(
            f"Unable to acquire lock '{name}' after {attempts} attempts", name=name, attempts=attempts
        )

    def unlock(self, lock: Lock) -> None:
        """Release ``lock`` on every store.

        Raises:
            ReleaseFailed: fewer than a quorum of stores deleted the key
        """
        self._check_name(lock.name)
        tally = self._fan_out(
            lambda store: store.release_if_matches(lock.name, lock.token),
            self.connect_timeout,
            stop_on_failure=True,
        )
        if tally.reached:
            logger.info("Released '%s' on %d/%d stores", lock.name, tally.successes, len(self.stores))
            return
        logger.warning("Release of '%s' confirmed by %d/%d stores", lock.name, tally.successes, self.quorum)
        raise ReleaseFailed(
            f"Unable to release lock '{lock.name}'", name=lock.name, successes=tally.successes
        )

    def extend(self, lock: Lock, validity_ms: int = None) -> Lock:
        """Renew a lock that is still valid, returning the refreshed Lock."""
        validity_ms = self._check_request(lock.name, validity_ms)
        if not lock.is_valid():
            raise LockExpired(f"Lock '{lock.name}' has already expired")

        start = time.monotonic()
        tally = self._fan_out(
            lambda store: store.extend_if_matches(lock.name, lock.token, validity_ms),
            self.connect_timeout,
            stop_on_failure=True,
        )
        end = time.monotonic()
        remaining = self._remaining_ms(validity_ms, end - start)
        if tally.reached and remaining > 0:
            return dataclasses.replace(lock, validity_ms=int(remaining), acquired_at=end)
        raise ExtendFailed(
            f"Unable to extend lock '{lock.name}'", name=lock.name, successes=tally.successes
        )

    @contextmanager
    def locked(self, name: str, validity_ms: int = None, **options):
        """Hold ``name`` for the duration of a ``with`` block."""
        lock = self.lock(name, validity_ms, **options)
        try:
            yield lock
        finally:
            try:
                self.unlock(lock)
            except ReleaseFailed:
                if lock.is_valid():
                    raise
                logger.warning("Lock '%s' expired before it was released", name)

    def close(self) -> None:
        for store in self.stores:
            store.close()
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class AsyncRedlock(_RedlockBase):
    """Quorum lock manager over asyncio stores.

    Cancelling the task that runs ``lock()`` aborts it; the release of the
    attempt in flight still goes out to every store first.
    """

    @classmethod
    def from_settings(cls, settings: ManagerSettings, **options) -> "AsyncRedlock":
        stores = build_stores(settings, asynchronous=True)
        return cls(stores, **{**cls._settings_kwargs(settings), **options})

    async def _fan_out(
        self,
        call: Callable[[AsyncStore], object],
        timeout: float,
        stop_on_quorum: bool = True,
        stop_on_failure: bool = False,
    ) -> _Tally:
        tally = _Tally(len(self.stores), self.quorum)
        tasks = {asyncio.ensure_future(call(store)): store for store in self.stores}
        pending = set(tasks)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while pending and not tally.decided(stop_on_quorum, stop_on_failure):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    tally.add(tasks[task], task)
        finally:
            for task in pending:
                task.cancel()
        return tally

    async def _release_all(self, name: str, token: str) -> _Tally:
        return await self._fan_out(
            lambda store: store.release_if_matches(name, token),
            self.connect_timeout,
            stop_on_quorum=False,
        )

    async def lock(
        self,
        name: str,
        validity_ms: int = None,
        *,
        retry_count: int = None,
        retry_delay_ms: int = None,
        timeout: float = None,
    ) -> Lock:
        """Acquire a lock on ``name``. See :meth:`Redlock.lock`."""
        validity_ms = self._check_request(name, validity_ms)
        attempts, delay_ms = self._retry_plan(retry_count, retry_delay_ms)
        deadline = None if timeout is None else time.monotonic() + timeout

        for attempt in range(1, attempts + 1):
            token = self._tokens.next()
            start = time.monotonic()
            try:
                tally = await self._fan_out(
                    lambda store: store.acquire_if_absent(name, token, validity_ms),
                    self._budget(deadline),
                )
            except asyncio.CancelledError:
                await asyncio.shield(self._release_all(name, token))
                raise
            end = time.monotonic()
            elapsed = end - start
            remaining = self._remaining_ms(validity_ms, elapsed)

            if tally.reached and remaining > 0:
                lock = Lock(name, token, int(remaining), end, tally.fencing_token)
                logger.info(
                    "Acquired '%s' on %d/%d stores (attempt %d, validity %dms)",
                    name, tally.successes, len(self.stores), attempt, lock.validity_ms,
                )
                return lock

            logger.debug(
                "Attempt %d for '%s' failed: %d/%d votes in %.1fms",
                attempt, name, tally.successes, self.quorum, elapsed * 1000.0,
            )
            await asyncio.shield(self._release_all(name, token))
            if remaining <= 0:
                raise self._drift_exceeded(name, elapsed, validity_ms)
            if attempt == attempts:
                break

            pause = self._backoff(delay_ms)
            if deadline is not None and time.monotonic() + pause >= deadline:
                raise AcquireTimeout(
                    f"Deadline passed while acquiring lock '{name}'", name=name, attempts=attempt
                )
            await asyncio.sleep(pause)

        raise AcquireFailed(
            f"Unable to acquire lock '{name}' after {attempts} attempts", name=name, attempts=attempts
        )

    async def unlock(self, lock: Lock) -> None:
        """Release ``lock`` on every store. See :meth:`Redlock.unlock`."""
        self._check_name(lock.name)
        tally = await self._fan_out(
            lambda store: store.release_if_matches(lock.name, lock.token),
            self.connect_timeout,
            stop_on_failure=True,
        )
        if tally.reached:
            logger.info("Released '%s' on %d/%d stores", lock.name, tally.successes, len(self.stores))
            return
        logger.warning("Release of '%s' confirmed by %d/%d stores", lock.name, tally.successes, self.quorum)
        raise ReleaseFailed(
            f"Unable to release lock '{lock.name}'", name=lock.name, successes=tally.successes
        )

    async def extend(self, lock: Lock, validity_ms: int = None) -> Lock:
        validity_ms = self._check_request(lock.name, validity_ms)
        if not lock.is_valid():
            raise LockExpired(f"Lock '{lock.name}' has already expired")

        start = time.monotonic()
        tally = await self._fan_out(
            lambda store: store.extend_if_matches(lock.name, lock.token, validity_ms),
            self.connect_timeout,
            stop_on_failure=True,
        )
        end = time.monotonic()
        remaining = self._remaining_ms(validity_ms, end - start)
        if tally.reached and remaining > 0:
            return dataclasses.replace(lock, validity_ms=int(remaining), acquired_at=end)
        raise ExtendFailed(
            f"Unable to extend lock '{lock.name}'", name=lock.name, successes=tally.successes
        )

    @asynccontextmanager
    async def locked(self, name: str, validity_ms: int = None, **options):
        lock = await self.lock(name, validity_ms, **options)
        try:
            yield lock
        finally:
            try:
                await self.unlock(lock)
            except ReleaseFailed:
                if lock.is_valid():
                    raise
                logger.warning("Lock '%s' expired before it was released", name)

    async def close(self) -> None:
        for store in self.stores:
            await store.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
