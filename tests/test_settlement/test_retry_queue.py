"""Tests for backoff delays and the delayed, cancellable RetryQueue."""

import asyncio

import pytest

from feesettle.settlement.retry_queue import RetryQueue, backoff_delay


class TestBackoffDelay:
    def test_exponential(self) -> None:
        delays = [backoff_delay(n, 1.0, 300.0) for n in range(1, 6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped(self) -> None:
        assert backoff_delay(20, 1.0, 300.0) == 300.0

    def test_explicit_schedule_repeats_last_entry(self) -> None:
        schedule = [5.0, 30.0, 120.0]
        assert backoff_delay(1, 1.0, 300.0, schedule) == 5.0
        assert backoff_delay(3, 1.0, 300.0, schedule) == 120.0
        assert backoff_delay(7, 1.0, 300.0, schedule) == 120.0

    def test_zero_treated_as_first_retry(self) -> None:
        assert backoff_delay(0, 2.0, 300.0) == 2.0


class TestRetryQueue:
    @pytest.mark.asyncio
    async def test_fires_after_delay(self) -> None:
        queue = RetryQueue()
        fired: list[str] = []

        async def callback() -> None:
            fired.append("txn-1")

        queue.schedule("txn-1", 0.01, callback)
        assert queue.pending == 1
        assert queue.is_scheduled("txn-1")

        await queue.wait_idle()
        assert fired == ["txn-1"]
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_cancel_before_firing(self) -> None:
        queue = RetryQueue()
        fired: list[str] = []

        async def callback() -> None:
            fired.append("txn-1")

        queue.schedule("txn-1", 10.0, callback)
        assert queue.cancel("txn-1") is True
        assert queue.cancel("txn-1") is False

        await queue.wait_idle()
        assert fired == []
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_cancel_after_firing_is_noop(self) -> None:
        queue = RetryQueue()
        started = asyncio.Event()
        release = asyncio.Event()

        async def callback() -> None:
            started.set()
            await release.wait()

        queue.schedule("txn-1", 0.0, callback)
        await started.wait()

        assert queue.cancel("txn-1") is False
        assert queue.pending == 0
        assert queue.idle is False
        release.set()
        await queue.wait_idle()
        assert queue.idle is True

    @pytest.mark.asyncio
    async def test_reschedule_replaces_existing(self) -> None:
        queue = RetryQueue()
        fired: list[str] = []

        async def first() -> None:
            fired.append("first")

        async def second() -> None:
            fired.append("second")

        queue.schedule("txn-1", 10.0, first)
        queue.schedule("txn-1", 0.0, second)
        assert queue.pending == 1

        await queue.wait_idle()
        assert fired == ["second"]

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self) -> None:
        queue = RetryQueue()
        fired: list[str] = []

        async def broken() -> None:
            raise RuntimeError("boom")

        async def healthy() -> None:
            fired.append("txn-2")

        queue.schedule("txn-1", 0.0, broken)
        queue.schedule("txn-2", 0.0, healthy)

        await queue.wait_idle()
        assert fired == ["txn-2"]

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self) -> None:
        queue = RetryQueue()
        fired: list[str] = []

        async def callback() -> None:
            fired.append("fired")

        queue.schedule("txn-1", 10.0, callback)
        queue.schedule("txn-2", 10.0, callback)

        await queue.close()
        assert queue.pending == 0
        assert fired == []
