"""Delayed, cancellable re-submission of failed settlements.

Each scheduled retry is an asyncio task sleeping until its delay elapses --
no polling loop. A retry can be cancelled until it fires; once fired it is
no longer in the queue and cancel() is a no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from feesettle.logging import get_logger

logger = get_logger(__name__)


def backoff_delay(
    retry_count: int,
    base_delay: float,
    max_delay: float,
    schedule: list[float] | None = None,
) -> float:
    """Delay before retry number ``retry_count`` (1-based).

    An explicit schedule wins (its last entry repeats); otherwise the delay
    doubles from ``base_delay`` and is capped at ``max_delay``:
    1s, 2s, 4s, 8s, ...
    """
    attempt = max(retry_count, 1)
    if schedule:
        return schedule[min(attempt, len(schedule)) - 1]
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


class RetryQueue:
    """Keyed queue of delayed async callbacks.

    Usage:
        queue = RetryQueue()
        queue.schedule("txn-id", 2.0, lambda: coordinator.resubmit("txn-id"))
        queue.cancel("txn-id")      # True if it had not fired yet
        await queue.wait_idle()     # wait for scheduled and running callbacks
    """

    def __init__(self) -> None:
        self._scheduled: dict[str, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of scheduled retries that have not fired yet."""
        return len(self._scheduled)

    @property
    def idle(self) -> bool:
        """True when nothing is scheduled and no fired callback is still running."""
        return not self._tasks

    def is_scheduled(self, key: str) -> bool:
        return key in self._scheduled

    def schedule(
        self,
        key: str,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        """Run ``callback`` after ``delay`` seconds, replacing any retry already queued for ``key``."""
        self.cancel(key)
        task = asyncio.create_task(self._fire(key, delay, callback))
        self._scheduled[key] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("retry_scheduled", key=key, delay=delay)

    def cancel(self, key: str) -> bool:
        """Remove a scheduled retry before it fires.

        Returns:
            True if a scheduled retry was removed, False if none was queued
            (never scheduled, or already fired).
        """
        task = self._scheduled.pop(key, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("retry_cancelled", key=key)
        return True

    async def wait_idle(self) -> None:
        """Wait until every scheduled and running callback has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every scheduled retry and wait for running callbacks to stop."""
        self._scheduled.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(
        self,
        key: str,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        await asyncio.sleep(delay)

        # Fired: leave the queue before running so cancel() no longer reaches us
        if self._scheduled.get(key) is asyncio.current_task():
            del self._scheduled[key]

        try:
            await callback()
        except Exception:
            logger.exception("scheduled_retry_failed", key=key)
