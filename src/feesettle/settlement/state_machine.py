"""Fee transaction lifecycle transitions.

    PENDING ──success──▶ COLLECTED ──refund──▶ REFUNDED
       │  ▲
  fail │  │ retry (retry_count < max_retries)
       ▼  │
      FAILED ── retry_count == max_retries: terminal, no further retry

Every function is pure: it validates the current status and returns a new
FeeTransaction. Persistence (and the optimistic version bump) is the caller's
job. Any transition not drawn above raises InvalidStateTransition.
"""

from dataclasses import replace
from datetime import datetime

from feesettle.exceptions import InvalidStateTransition, RetryExhausted
from feesettle.models import FeeStatus, FeeTransaction, RefundSnapshot

ALLOWED_TRANSITIONS: dict[FeeStatus, frozenset[FeeStatus]] = {
    FeeStatus.PENDING: frozenset({FeeStatus.COLLECTED, FeeStatus.FAILED}),
    FeeStatus.FAILED: frozenset({FeeStatus.PENDING}),
    FeeStatus.COLLECTED: frozenset({FeeStatus.REFUNDED}),
    FeeStatus.REFUNDED: frozenset(),
}


def _require(txn: FeeTransaction, target: FeeStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[txn.status]:
        raise InvalidStateTransition(txn.id, txn.status.value, target.value)


def mark_collected(txn: FeeTransaction, tx_hash: str, now: datetime) -> FeeTransaction:
    """PENDING -> COLLECTED after the ledger confirmed the submission."""
    _require(txn, FeeStatus.COLLECTED)
    return replace(
        txn,
        status=FeeStatus.COLLECTED,
        ledger_tx_hash=tx_hash,
        collected_at=now,
        failure_reason=None,
        failure_retryable=False,
        updated_at=now,
    )


def mark_failed(
    txn: FeeTransaction,
    reason: str,
    retryable: bool,
    now: datetime,
) -> FeeTransaction:
    """PENDING -> FAILED after a ledger rejection or timeout.

    Only retryable failures are retried automatically. retry_count is left
    alone: it counts retries started, not failures.
    """
    _require(txn, FeeStatus.FAILED)
    return replace(
        txn,
        status=FeeStatus.FAILED,
        failure_reason=reason or "unknown failure",
        failure_retryable=retryable,
        updated_at=now,
    )


def mark_retrying(txn: FeeTransaction, max_retries: int, now: datetime) -> FeeTransaction:
    """FAILED -> PENDING for another submission attempt, counting the retry.

    Raises:
        RetryExhausted: retry_count has reached max_retries.
        InvalidStateTransition: The transaction is not FAILED.
    """
    _require(txn, FeeStatus.PENDING)
    if is_retry_exhausted(txn, max_retries):
        raise RetryExhausted(txn.id, txn.retry_count, max_retries)
    return replace(
        txn,
        status=FeeStatus.PENDING,
        retry_count=txn.retry_count + 1,
        failure_reason=None,
        failure_retryable=False,
        updated_at=now,
    )


def mark_refunded(txn: FeeTransaction, now: datetime) -> FeeTransaction:
    """COLLECTED -> REFUNDED. An already REFUNDED record is returned unchanged.

    Raises:
        InvalidStateTransition: The transaction is not COLLECTED, or is
            COLLECTED without a collection time.
    """
    if txn.status is FeeStatus.REFUNDED:
        return txn
    _require(txn, FeeStatus.REFUNDED)
    if txn.collected_at is None:
        raise InvalidStateTransition(txn.id, "COLLECTED without collected_at", "REFUNDED")
    return replace(
        txn,
        status=FeeStatus.REFUNDED,
        refund=RefundSnapshot(
            refunded_at=now,
            refunded_amount=txn.fee_amount,
            collected_at=txn.collected_at,
        ),
        collected_at=None,
        updated_at=now,
    )


def is_retry_exhausted(txn: FeeTransaction, max_retries: int) -> bool:
    return txn.status is FeeStatus.FAILED and txn.retry_count >= max_retries


def can_auto_retry(txn: FeeTransaction, max_retries: int) -> bool:
    """True when the retry queue should schedule another attempt."""
    return (
        txn.status is FeeStatus.FAILED
        and txn.failure_retryable
        and not is_retry_exhausted(txn, max_retries)
    )
