"""Fee settlement -- lifecycle state machine, retry queue and coordinator."""

from feesettle.settlement.coordinator import SettlementCoordinator
from feesettle.settlement.reconciliation import (
    LoggingReconciler,
    ReconciliationTask,
    Reconciler,
)
from feesettle.settlement.retry_queue import RetryQueue, backoff_delay

__all__ = [
    "LoggingReconciler",
    "ReconciliationTask",
    "Reconciler",
    "RetryQueue",
    "SettlementCoordinator",
    "backoff_delay",
]
