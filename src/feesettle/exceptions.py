"""Custom exceptions for the fee settlement core.

All money, policy, state-machine and settlement exceptions live here
to avoid circular imports between modules.
"""


class FeeSettlementError(Exception):
    """Base exception for all fee settlement errors."""


class InvalidAmount(FeeSettlementError):
    """Raised when a monetary amount or rate is malformed, negative, or too precise."""


class Overflow(FeeSettlementError):
    """Raised when an amount needs more than the 20 representable digits."""


class UnknownPromotionCode(FeeSettlementError):
    """Raised when a promotion code is supplied but not in the configured table."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Unknown promotion code: {code!r}")
        self.code = code


class FeeConfigurationError(FeeSettlementError):
    """Raised when the fee policy lacks a rate for the selected tier."""


class NotFound(FeeSettlementError):
    """Raised when a fee transaction id does not exist."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Fee transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class InvalidStateTransition(FeeSettlementError):
    """Raised when a fee transaction cannot move from its current status."""

    def __init__(self, transaction_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Fee transaction {transaction_id} cannot move from {current} to {target}"
        )
        self.transaction_id = transaction_id
        self.current = current
        self.target = target


class RetryExhausted(InvalidStateTransition):
    """Raised when a FAILED transaction has used every configured retry."""

    def __init__(self, transaction_id: str, retry_count: int, max_retries: int) -> None:
        super().__init__(transaction_id, "FAILED", "PENDING")
        self.args = (
            f"Fee transaction {transaction_id} exhausted retries "
            f"({retry_count}/{max_retries})",
        )
        self.retry_count = retry_count
        self.max_retries = max_retries


class ConcurrentModification(FeeSettlementError):
    """Raised when another writer changed or holds the transaction first.

    The caller must re-read the transaction before trying again.
    """

    def __init__(self, transaction_id: str, detail: str = "") -> None:
        message = f"Fee transaction {transaction_id} was modified concurrently"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.transaction_id = transaction_id


class LedgerSubmissionFailed(FeeSettlementError):
    """Raised by a ledger client when a settlement submission is rejected.

    Args:
        reason: Human-readable rejection reason (stored as failure_reason).
        retryable: True for transient failures (network, timeout, congestion).
    """

    def __init__(self, reason: str, retryable: bool) -> None:
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable
