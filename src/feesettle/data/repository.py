"""Abstract fee transaction repository.

The settlement coordinator depends ONLY on this interface. Updates are
compare-and-swap on the record's ``version``: a writer that read an older
version loses with ConcurrentModification and must re-read.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from feesettle.models import FeeStatus, FeeTransaction


class FeeTransactionRepository(ABC):
    """Persistence contract for fee transactions."""

    @abstractmethod
    async def create(self, txn: FeeTransaction) -> FeeTransaction:
        """Insert a new transaction (version 0).

        Raises:
            ConcurrentModification: A transaction with the same id exists.
        """
        ...

    @abstractmethod
    async def get(self, transaction_id: str) -> FeeTransaction | None:
        """Return the stored transaction, or None if the id is unknown."""
        ...

    @abstractmethod
    async def update(self, txn: FeeTransaction, expected_version: int) -> FeeTransaction:
        """Replace the stored record if its version still equals ``expected_version``.

        Returns:
            The stored record, with ``version`` set to ``expected_version + 1``.

        Raises:
            ConcurrentModification: The stored version differs.
            NotFound: The id is unknown.
        """
        ...

    @abstractmethod
    async def find_by_status(
        self,
        status: FeeStatus,
        created_before: datetime | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[FeeTransaction]:
        """List transactions in ``status``, oldest first, for retry scanning.

        Ties on ``created_at`` are ordered by id, so ``offset`` pages through a
        stable listing as long as no record changes status in between.
        """
        ...

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""
        return None
