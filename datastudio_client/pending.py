"""Pending-result registry bridging webhook deliveries and waiting callers.

A waiter is a single-resolution slot keyed by job id (or ``ANY``). Resolvers
may run on any thread; awaiters run on the event loop. Every finalisation
(resolve, reject, cancel, timeout, sweep) removes the entry and completes the
slot under one lock, so a slot is completed at most once and a key present in
the registry is never already resolved.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field

from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.types import ProcessedResult

logger = logging.getLogger(__name__)

ANY = "*"


@dataclass
class PendingWaiter:
    key: str
    created_at: float  # monotonic seconds
    future: Future[ProcessedResult] = field(default_factory=Future)

    @property
    def done(self) -> bool:
        return self.future.done()


class PendingResultRegistry:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._waiters: dict[str, PendingWaiter] = {}  # insertion order == registration order

    def __len__(self) -> int:
        with self._lock:
            return len(self._waiters)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._waiters

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._waiters)

    def register(self, key: str) -> PendingWaiter:
        """Return the unresolved waiter for ``key``, creating it if needed."""
        with self._lock:
            waiter = self._waiters.get(key)
            if waiter is not None:
                return waiter
            waiter = PendingWaiter(key=key, created_at=self._clock())
            self._waiters[key] = waiter
        logger.info("Registered pending result for processId: %s", key)
        return waiter

    # -- finalisation (all under self._lock) ------------------------------

    def _complete_locked(
        self,
        waiter: PendingWaiter,
        *,
        result: ProcessedResult | None = None,
        error: BaseException | None = None,
    ) -> bool:
        if self._waiters.get(waiter.key) is waiter:
            del self._waiters[waiter.key]
        if waiter.future.done():
            return False
        if error is not None:
            waiter.future.set_exception(error)
        else:
            waiter.future.set_result(result)  # type: ignore[arg-type]
        return True

    def resolve(self, key: str, result: ProcessedResult) -> bool:
        with self._lock:
            waiter = self._waiters.get(key)
            completed = waiter is not None and self._complete_locked(waiter, result=result)
        if not completed:
            logger.warning("No pending result for processId: %s; ignoring resolution", key)
            return False
        logger.info("Resolved pending result for processId: %s", key)
        return True

    def reject(self, key: str, error: BaseException) -> bool:
        with self._lock:
            waiter = self._waiters.get(key)
            completed = waiter is not None and self._complete_locked(waiter, error=error)
        if not completed:
            logger.warning("No pending result for processId: %s; ignoring rejection", key)
            return False
        logger.info("Rejected pending result for processId: %s: %s", key, error)
        return True

    def resolve_any(self, result: ProcessedResult) -> bool:
        """Resolve the oldest outstanding waiter.

        Only correct while at most one job is awaited at a time; prefer
        ``resolve`` whenever the payload names its job.
        """
        with self._lock:
            waiter = next(iter(self._waiters.values()), None)
            completed = waiter is not None and self._complete_locked(waiter, result=result)
        if not completed or waiter is None:
            logger.warning("No pending results to complete")
            return False
        logger.info("Completed oldest pending result (processId: %s)", waiter.key)
        return True

    def cancel(self, key: str) -> bool:
        with self._lock:
            waiter = self._waiters.get(key)
            completed = waiter is not None and self._complete_locked(
                waiter,
                error=DataStudioError(
                    ErrorKind.CANCELLED, f"Wait for {key} was cancelled", job_id=key
                ),
            )
        if completed:
            logger.info("Cancelled pending result for processId: %s", key)
        return completed

    def sweep(self, max_age: float) -> int:
        """Cancel waiters registered more than ``max_age`` seconds ago."""
        now = self._clock()
        expired = 0
        with self._lock:
            for waiter in [w for w in self._waiters.values() if now - w.created_at > max_age]:
                err = DataStudioError(
                    ErrorKind.CANCELLED,
                    f"Wait for {waiter.key} abandoned after {max_age:.0f}s",
                    job_id=waiter.key,
                )
                if self._complete_locked(waiter, error=err):
                    expired += 1
        if expired:
            logger.warning("Swept %d abandoned pending result(s)", expired)
        return expired

    # -- waiting ----------------------------------------------------------

    async def wait(self, key: str, timeout: float) -> ProcessedResult:
        """Suspend until ``key`` is resolved, rejected or cancelled.

        Concurrent waits on one key share its waiter, so the shortest
        ``timeout`` finalises it for every caller.

        Raises:
            DataStudioError: ``TIMEOUT`` after ``timeout`` seconds, ``CANCELLED``
                when ``cancel``/``sweep`` finalised the waiter, or the error
                passed to ``reject``.
        """
        waiter = self.register(key)
        wrapped = asyncio.wrap_future(waiter.future)
        try:
            await asyncio.wait({wrapped}, timeout=timeout)
        except asyncio.CancelledError:
            with self._lock:
                self._complete_locked(
                    waiter,
                    error=DataStudioError(
                        ErrorKind.CANCELLED, f"Wait for {key} was cancelled", job_id=key
                    ),
                )
            _release(wrapped)
            raise

        with self._lock:
            timed_out = self._complete_locked(
                waiter,
                error=DataStudioError(
                    ErrorKind.TIMEOUT,
                    f"No webhook result for {key} within {timeout}s",
                    job_id=key,
                ),
            )
        _release(wrapped)
        if timed_out:
            logger.warning("Timed out waiting for webhook result for processId: %s", key)
        return waiter.future.result()


def _release(wrapped: asyncio.Future[ProcessedResult]) -> None:
    # Mark a delivered exception as retrieved, or detach a still-pending wrapper.
    if wrapped.done():
        if not wrapped.cancelled():
            wrapped.exception()
    else:
        wrapped.cancel()
