"""Settlement coordinator: fee transaction lifecycle from trade event to ledger.

Flow for one trade:
1. FeePolicyEngine selects tier and rate; fee = trade * rate (half-even)
2. FeeTransaction is persisted PENDING and returned to the caller
3. A background task submits the fee to the ledger client
4. The result is persisted: COLLECTED, or FAILED with a retry scheduled
   on the RetryQueue (exponential backoff) while retries remain
5. REFUNDED only through request_refund()

Concurrency rules:
- One asyncio.Lock per transaction id. Operator calls (refund, manual retry)
  and scheduled retries never wait for it: a held lock means another
  operation is running and they fail with ConcurrentModification.
- The lock is NOT held while the ledger call is in flight.
- Every write is a compare-and-swap on ``version`` in the repository, so a
  writer in another process also loses with ConcurrentModification.

If the ledger accepted a payment but the outcome cannot be persisted, the
transaction stays PENDING and a ReconciliationTask is reported. It is never
marked FAILED while the ledger may hold a successful payment.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any
from uuid import uuid4

from feesettle.config import SettlementSettings
from feesettle.data.repository import FeeTransactionRepository
from feesettle.exceptions import (
    ConcurrentModification,
    InvalidStateTransition,
    LedgerSubmissionFailed,
    NotFound,
    UnknownPromotionCode,
)
from feesettle.ledger.client import LedgerClient
from feesettle.logging import get_logger
from feesettle.models import (
    FeeDecision,
    FeeQuote,
    FeeStatus,
    FeeTier,
    FeeTransaction,
    PromotionSnapshot,
    UserContext,
    VolumeSnapshot,
)
from feesettle.money import Money
from feesettle.policy.engine import FeePolicyEngine
from feesettle.settlement.reconciliation import (
    LoggingReconciler,
    ReconciliationTask,
    Reconciler,
)
from feesettle.settlement.retry_queue import RetryQueue, backoff_delay
from feesettle.settlement.state_machine import (
    can_auto_retry,
    mark_collected,
    mark_failed,
    mark_refunded,
    mark_retrying,
)

logger = get_logger(__name__)

# Re-read/compare-and-swap rounds when recording a ledger result
_MAX_CAS_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementCoordinator:
    """Creates fee transactions and drives them through settlement.

    Args:
        policy: Fee policy engine (tier and rate selection).
        repository: Fee transaction persistence.
        ledger: Settlement ledger client.
        settings: Retry, timeout and recovery parameters.
        retry_queue: Queue for delayed retries (a new one if omitted).
        reconciler: Receives outcomes that could not be recorded.
        platform_wallet_address: Destination used when a settlement request
            names none.
        fallback_on_unknown_promotion: When True an unknown promotion code is
            logged and ignored; when False UnknownPromotionCode is raised.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        policy: FeePolicyEngine,
        repository: FeeTransactionRepository,
        ledger: LedgerClient,
        settings: SettlementSettings,
        retry_queue: RetryQueue | None = None,
        reconciler: Reconciler | None = None,
        platform_wallet_address: str = "",
        fallback_on_unknown_promotion: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._policy = policy
        self._repository = repository
        self._ledger = ledger
        self._settings = settings
        self._retry_queue = retry_queue or RetryQueue()
        self._reconciler = reconciler or LoggingReconciler()
        self._platform_wallet_address = platform_wallet_address
        self._fallback_on_unknown_promotion = fallback_on_unknown_promotion
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def retry_queue(self) -> RetryQueue:
        return self._retry_queue

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    def compute_fee_quote(self, trade_amount: Money, user: UserContext) -> FeeQuote:
        """Quote the fee for a trade without creating anything.

        Raises:
            UnknownPromotionCode: Unknown code and fallback disabled.
            FeeConfigurationError: The selected tier has no configured rate.
        """
        decision = self._decide(trade_amount, user)
        return FeeQuote(
            fee_rate=decision.fee_rate,
            fee_tier=decision.fee_tier,
            fee_amount=trade_amount.multiply_by_rate(decision.fee_rate),
        )

    async def initiate_settlement(
        self,
        trade_id: str | None,
        trade_amount: Money,
        user: UserContext,
        asset_code: str,
        asset_issuer: str,
        destination_address: str | None = None,
    ) -> FeeTransaction:
        """Create a PENDING fee transaction and start settling it in the background.

        Returns:
            The persisted PENDING transaction. Use get_transaction() to follow
            its progress.

        Raises:
            UnknownPromotionCode: Unknown code and fallback disabled.
            FeeConfigurationError: The selected tier has no configured rate.
        """
        decision = self._decide(trade_amount, user)
        now = self._clock()

        promotion = None
        if decision.fee_tier is FeeTier.PROMOTIONAL and user.promotion_code:
            promotion = PromotionSnapshot(
                code=user.promotion_code,
                original_fee_rate=decision.original_fee_rate,
            )

        txn = FeeTransaction(
            id=str(uuid4()),
            user_id=user.user_id,
            trade_id=trade_id,
            trade_amount=trade_amount,
            fee_amount=trade_amount.multiply_by_rate(decision.fee_rate),
            fee_rate=decision.fee_rate,
            fee_tier=decision.fee_tier,
            asset_code=asset_code,
            asset_issuer=asset_issuer,
            destination_address=destination_address or self._platform_wallet_address or None,
            volume=VolumeSnapshot(
                user_tier=user.user_tier,
                monthly_volume=user.monthly_volume,
            ),
            promotion=promotion,
            created_at=now,
            updated_at=now,
        )
        txn = await self._repository.create(txn)

        logger.info(
            "fee_transaction_created",
            transaction_id=txn.id,
            user_id=txn.user_id,
            trade_id=trade_id,
            trade_amount=str(txn.trade_amount),
            fee_amount=str(txn.fee_amount),
            fee_rate=str(txn.fee_rate),
            fee_tier=txn.fee_tier.value,
        )

        self._spawn(self._submit(txn.id))
        return txn

    async def get_transaction(self, transaction_id: str) -> FeeTransaction:
        """Return the current record.

        Raises:
            NotFound: Unknown id.
        """
        txn = await self._repository.get(transaction_id)
        if txn is None:
            raise NotFound(transaction_id)
        return txn

    async def request_refund(self, transaction_id: str) -> FeeTransaction:
        """Reverse a COLLECTED fee. Repeating the request returns the same record.

        Raises:
            NotFound: Unknown id.
            InvalidStateTransition: The transaction is PENDING or FAILED.
            ConcurrentModification: Another operation on the transaction is in
                progress; re-read and try again.
        """
        async with self._claim(transaction_id):
            txn = await self.get_transaction(transaction_id)
            if txn.status is FeeStatus.REFUNDED:
                logger.info("refund_already_applied", transaction_id=transaction_id)
                return txn

            refunded = mark_refunded(txn, self._clock())
            stored = await self._repository.update(refunded, txn.version)

        logger.info(
            "fee_refunded",
            transaction_id=transaction_id,
            refunded_amount=str(stored.fee_amount),
            ledger_tx_hash=stored.ledger_tx_hash,
        )
        return stored

    async def retry_settlement(self, transaction_id: str) -> FeeTransaction:
        """Operator-initiated retry of a FAILED transaction.

        Works for non-retryable failures too (e.g. after the destination was
        fixed upstream), but never beyond max_retries. Any automatic retry
        already queued for the transaction is dropped.

        Raises:
            NotFound: Unknown id.
            RetryExhausted: retry_count has reached max_retries.
            InvalidStateTransition: The transaction is not FAILED.
            ConcurrentModification: Another operation is in progress.
        """
        pending = await self._reopen(transaction_id)
        self._retry_queue.cancel(transaction_id)
        self._spawn(self._submit(transaction_id))
        return pending

    async def resume(self) -> dict[str, int]:
        """Recover work left behind by a previous process.

        - PENDING transactions not touched within the stale window are
          reported for reconciliation: their submission outcome is unknown.
        - FAILED transactions that can still retry automatically are
          scheduled again.

        Both scans page through every matching record. Retries are scheduled
        only after the FAILED scan ends, so no record changes status while
        pages are being read.

        Returns:
            Counts of rescheduled retries and reconciliation reports.
        """
        now = self._clock()
        max_retries = self._settings.max_retries

        stale_before = now - timedelta(seconds=self._settings.pending_stale_after_seconds)
        reported = 0
        async for txn in self._scan(FeeStatus.PENDING, created_before=stale_before):
            if txn.updated_at >= stale_before:
                continue
            await self._report(txn.id, "PENDING past stale window; submission outcome unknown")
            reported += 1

        retryable = [
            txn
            async for txn in self._scan(FeeStatus.FAILED)
            if can_auto_retry(txn, max_retries) and not self._retry_queue.is_scheduled(txn.id)
        ]
        for txn in retryable:
            self._schedule_retry(txn)

        logger.info(
            "settlement_resume_complete",
            rescheduled=len(retryable),
            reconciliation_reported=reported,
        )
        return {"rescheduled": len(retryable), "reconciliation_reported": reported}

    async def join(self) -> None:
        """Wait for in-flight submissions and scheduled retries to finish."""
        while self._tasks or not self._retry_queue.idle:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self._retry_queue.wait_idle()

    async def close(self) -> None:
        """Cancel scheduled retries and in-flight submissions."""
        await self._retry_queue.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("settlement_coordinator_closed", cancelled_tasks=len(tasks))

    # ──────────────────────────────────────────────
    # Fee decision
    # ──────────────────────────────────────────────

    def _decide(self, trade_amount: Money, user: UserContext) -> FeeDecision:
        try:
            return self._policy.compute_fee(trade_amount, user)
        except UnknownPromotionCode as e:
            if not self._fallback_on_unknown_promotion:
                raise
            logger.warning(
                "unknown_promotion_code_ignored",
                promotion_code=e.code,
                user_id=user.user_id,
            )
            return self._policy.compute_fee(trade_amount, self._policy.without_promotion(user))

    # ──────────────────────────────────────────────
    # Locking
    # ──────────────────────────────────────────────

    def _lock_for(self, transaction_id: str) -> asyncio.Lock:
        lock = self._locks.get(transaction_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[transaction_id] = lock
        return lock

    @asynccontextmanager
    async def _claim(self, transaction_id: str) -> AsyncIterator[None]:
        """Take the transaction lock without waiting, or fail."""
        lock = self._lock_for(transaction_id)
        if lock.locked():
            raise ConcurrentModification(transaction_id, "another operation is in progress")
        async with lock:
            yield

    # ──────────────────────────────────────────────
    # Submission and result handling
    # ──────────────────────────────────────────────

    async def _reopen(self, transaction_id: str) -> FeeTransaction:
        """FAILED -> PENDING under the transaction lock."""
        async with self._claim(transaction_id):
            txn = await self.get_transaction(transaction_id)
            pending = mark_retrying(txn, self._settings.max_retries, self._clock())
            stored = await self._repository.update(pending, txn.version)

        logger.info(
            "settlement_retry_started",
            transaction_id=transaction_id,
            retry_count=stored.retry_count,
            max_retries=self._settings.max_retries,
        )
        return stored

    async def _auto_retry(self, transaction_id: str) -> None:
        """Retry-queue callback: reopen and resubmit.

        Losing the claim to another operation puts the retry back on the queue
        while the record can still be retried automatically.
        """
        try:
            await self._reopen(transaction_id)
        except ConcurrentModification as e:
            current = await self._repository.get(transaction_id)
            if (
                current is not None
                and can_auto_retry(current, self._settings.max_retries)
                and not self._retry_queue.is_scheduled(transaction_id)
            ):
                delay = self._schedule_retry(current)
                logger.info(
                    "scheduled_retry_deferred",
                    transaction_id=transaction_id,
                    reason=str(e),
                    delay=delay,
                )
                return
            logger.info("scheduled_retry_skipped", transaction_id=transaction_id, reason=str(e))
            return
        except (InvalidStateTransition, NotFound) as e:
            logger.info("scheduled_retry_skipped", transaction_id=transaction_id, reason=str(e))
            return
        await self._submit(transaction_id)

    async def _submit(self, transaction_id: str) -> None:
        """One submission attempt for a PENDING transaction."""
        async with self._lock_for(transaction_id):
            txn = await self._repository.get(transaction_id)
        if txn is None or txn.status is not FeeStatus.PENDING:
            logger.warning(
                "settlement_attempt_skipped",
                transaction_id=transaction_id,
                status=txn.status.value if txn else None,
            )
            return

        logger.info(
            "settlement_submitting",
            transaction_id=transaction_id,
            attempt=txn.retry_count + 1,
            fee_amount=str(txn.fee_amount),
            asset_code=txn.asset_code,
        )

        try:
            tx_hash = await asyncio.wait_for(
                self._ledger.submit(
                    txn.fee_amount,
                    txn.asset_code,
                    txn.asset_issuer,
                    txn.destination_address or "",
                ),
                timeout=self._settings.submit_timeout_seconds,
            )
        except LedgerSubmissionFailed as e:
            failure = e
        except TimeoutError:
            failure = LedgerSubmissionFailed("ledger submission timed out", retryable=True)
        except OSError as e:
            failure = LedgerSubmissionFailed(f"ledger unreachable: {e}", retryable=True)
        except Exception as e:
            # Outcome unknown: the payment may have gone through
            logger.exception("settlement_submit_error", transaction_id=transaction_id)
            await self._report(transaction_id, f"unexpected ledger client error: {e}")
            return
        else:
            await self._record_success(transaction_id, tx_hash)
            return

        await self._record_failure(transaction_id, failure)

    async def _record_success(self, transaction_id: str, tx_hash: str) -> None:
        async with self._lock_for(transaction_id):
            for _ in range(_MAX_CAS_ATTEMPTS):
                try:
                    current = await self._repository.get(transaction_id)
                    if current is None or current.status is not FeeStatus.PENDING:
                        status = current.status.value if current else "missing"
                        await self._report(
                            transaction_id,
                            f"ledger accepted payment but transaction is {status}",
                            tx_hash,
                        )
                        return
                    collected = mark_collected(current, tx_hash, self._clock())
                    stored = await self._repository.update(collected, current.version)
                except ConcurrentModification:
                    logger.warning("settlement_result_conflict", transaction_id=transaction_id)
                    continue
                except Exception as e:
                    logger.exception("settlement_persist_failed", transaction_id=transaction_id)
                    await self._report(
                        transaction_id, f"could not persist COLLECTED: {e}", tx_hash
                    )
                    return

                logger.info(
                    "fee_collected",
                    transaction_id=transaction_id,
                    ledger_tx_hash=tx_hash,
                    retry_count=stored.retry_count,
                )
                return

        await self._report(
            transaction_id, "could not persist COLLECTED after repeated conflicts", tx_hash
        )

    async def _record_failure(
        self, transaction_id: str, failure: LedgerSubmissionFailed
    ) -> None:
        stored: FeeTransaction | None = None
        async with self._lock_for(transaction_id):
            for _ in range(_MAX_CAS_ATTEMPTS):
                try:
                    current = await self._repository.get(transaction_id)
                    if current is None or current.status is not FeeStatus.PENDING:
                        logger.warning(
                            "settlement_failure_ignored",
                            transaction_id=transaction_id,
                            status=current.status.value if current else None,
                            reason=failure.reason,
                        )
                        return
                    failed = mark_failed(
                        current, failure.reason, failure.retryable, self._clock()
                    )
                    stored = await self._repository.update(failed, current.version)
                    break
                except ConcurrentModification:
                    logger.warning("settlement_result_conflict", transaction_id=transaction_id)
                except Exception as e:
                    logger.exception("settlement_persist_failed", transaction_id=transaction_id)
                    await self._report(
                        transaction_id, f"could not persist FAILED ({failure.reason}): {e}"
                    )
                    return

        if stored is None:
            logger.error(
                "settlement_failure_not_recorded",
                transaction_id=transaction_id,
                reason=failure.reason,
            )
            await self._report(
                transaction_id,
                f"could not persist FAILED ({failure.reason}) after repeated conflicts",
            )
            return

        max_retries = self._settings.max_retries
        if can_auto_retry(stored, max_retries):
            delay = self._schedule_retry(stored)
            logger.warning(
                "settlement_failed_retry_scheduled",
                transaction_id=transaction_id,
                reason=failure.reason,
                retry_count=stored.retry_count,
                max_retries=max_retries,
                delay=delay,
            )
        elif failure.retryable:
            logger.error(
                "settlement_retries_exhausted",
                transaction_id=transaction_id,
                reason=failure.reason,
                retry_count=stored.retry_count,
            )
        else:
            logger.error(
                "settlement_failed_permanently",
                transaction_id=transaction_id,
                reason=failure.reason,
            )

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    async def _scan(
        self, status: FeeStatus, created_before: datetime | None = None
    ) -> AsyncIterator[FeeTransaction]:
        """Yield every transaction in ``status``, one repository page at a time."""
        batch = self._settings.scan_batch_size
        offset = 0
        while True:
            page = await self._repository.find_by_status(
                status, created_before=created_before, limit=batch, offset=offset
            )
            for txn in page:
                yield txn
            if len(page) < batch:
                return
            offset += batch

    def _schedule_retry(self, txn: FeeTransaction) -> float:
        delay = backoff_delay(
            txn.retry_count + 1,
            self._settings.retry_base_delay,
            self._settings.retry_max_delay,
            self._settings.retry_backoff_schedule,
        )
        self._retry_queue.schedule(txn.id, delay, partial(self._auto_retry, txn.id))
        return delay

    async def _report(
        self, transaction_id: str, reason: str, ledger_tx_hash: str | None = None
    ) -> None:
        await self._reconciler.report(
            ReconciliationTask(
                transaction_id=transaction_id,
                reason=reason,
                detected_at=self._clock(),
                ledger_tx_hash=ledger_tx_hash,
            )
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "settlement_task_failed",
                error=str(exc),
                exc_info=exc,
            )
