"""In-memory fee transaction repository for tests and ephemeral runs."""

from dataclasses import replace
from datetime import datetime

from feesettle.data.repository import FeeTransactionRepository
from feesettle.exceptions import ConcurrentModification, NotFound
from feesettle.models import FeeStatus, FeeTransaction


class InMemoryFeeTransactionRepository(FeeTransactionRepository):
    """Dict-backed repository.

    Check-and-set runs without awaiting in between, so it is atomic on a
    single event loop.
    """

    def __init__(self) -> None:
        self._records: dict[str, FeeTransaction] = {}

    async def create(self, txn: FeeTransaction) -> FeeTransaction:
        if txn.id in self._records:
            raise ConcurrentModification(txn.id, "already exists")
        stored = replace(txn, version=0)
        self._records[txn.id] = stored
        return stored

    async def get(self, transaction_id: str) -> FeeTransaction | None:
        return self._records.get(transaction_id)

    async def update(self, txn: FeeTransaction, expected_version: int) -> FeeTransaction:
        current = self._records.get(txn.id)
        if current is None:
            raise NotFound(txn.id)
        if current.version != expected_version:
            raise ConcurrentModification(
                txn.id, f"expected version {expected_version}, found {current.version}"
            )
        stored = replace(txn, version=expected_version + 1)
        self._records[txn.id] = stored
        return stored

    async def find_by_status(
        self,
        status: FeeStatus,
        created_before: datetime | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[FeeTransaction]:
        matches = [
            txn
            for txn in self._records.values()
            if txn.status is status
            and (created_before is None or txn.created_at < created_before)
        ]
        matches.sort(key=lambda t: (t.created_at, t.id))
        return matches[offset : offset + limit]
