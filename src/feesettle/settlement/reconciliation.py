"""Reconciliation hand-off for settlements whose outcome could not be recorded.

Two situations end up here:
- the ledger accepted a submission but persisting COLLECTED failed, or the
  record had already moved on; the transaction stays PENDING
- a PENDING transaction found on startup is older than the stale window, so
  its in-flight submission was lost with the previous process

The core never guesses the outcome. It reports a ReconciliationTask and an
operator (or a ledger-scanning job) resolves it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from feesettle.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationTask:
    """A transaction whose ledger outcome and stored state may disagree."""

    transaction_id: str
    reason: str
    detected_at: datetime
    ledger_tx_hash: str | None = None  # set when the ledger reported success


class Reconciler(ABC):
    """Receives reconciliation tasks from the settlement coordinator."""

    @abstractmethod
    async def report(self, task: ReconciliationTask) -> None:
        """Record a task for later resolution. Must not raise for duplicates."""
        ...


class LoggingReconciler(Reconciler):
    """Keeps reported tasks in memory and logs each one at ERROR level."""

    def __init__(self) -> None:
        self._tasks: dict[str, ReconciliationTask] = {}

    async def report(self, task: ReconciliationTask) -> None:
        self._tasks[task.transaction_id] = task
        logger.error(
            "settlement_needs_reconciliation",
            transaction_id=task.transaction_id,
            reason=task.reason,
            ledger_tx_hash=task.ledger_tx_hash,
        )

    def get_open_tasks(self) -> list[ReconciliationTask]:
        return sorted(self._tasks.values(), key=lambda t: t.detected_at)

    def resolve(self, transaction_id: str) -> bool:
        """Drop a task once it has been handled. Returns False if unknown."""
        return self._tasks.pop(transaction_id, None) is not None
