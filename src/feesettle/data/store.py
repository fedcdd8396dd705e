"""SQLite-backed fee transaction repository.

All SQL and the row <-> FeeTransaction mapping are isolated in this module;
the domain records in feesettle.models know nothing about storage.

CRITICAL: All monetary/rate values stored as TEXT in SQLite, restored as
Money/Decimal on read. Timestamps are stored as ISO-8601 text, so ordering
by created_at is chronological for UTC timestamps.
"""

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Any

from feesettle.data.database import FeeDatabase
from feesettle.data.repository import FeeTransactionRepository
from feesettle.exceptions import ConcurrentModification, NotFound
from feesettle.logging import get_logger
from feesettle.models import (
    FeeStatus,
    FeeTier,
    FeeTransaction,
    PromotionSnapshot,
    RefundSnapshot,
    VolumeSnapshot,
)
from feesettle.money import Money

logger = get_logger(__name__)

_COLUMNS = (
    "id, user_id, trade_id, trade_amount, fee_amount, fee_rate, fee_tier, status, "
    "ledger_tx_hash, asset_code, asset_issuer, destination_address, failure_reason, "
    "failure_retryable, retry_count, metadata, created_at, updated_at, collected_at, version"
)


# ──────────────────────────────────────────────
# Row mapping
# ──────────────────────────────────────────────


def _to_row(txn: FeeTransaction) -> tuple[Any, ...]:
    return (
        txn.id,
        txn.user_id,
        txn.trade_id,
        str(txn.trade_amount),
        str(txn.fee_amount),
        str(txn.fee_rate),
        txn.fee_tier.value,
        txn.status.value,
        txn.ledger_tx_hash,
        txn.asset_code,
        txn.asset_issuer,
        txn.destination_address,
        txn.failure_reason,
        1 if txn.failure_retryable else 0,
        txn.retry_count,
        json.dumps(txn.metadata, sort_keys=True),
        txn.created_at.isoformat(),
        txn.updated_at.isoformat(),
        txn.collected_at.isoformat() if txn.collected_at else None,
        txn.version,
    )


def _from_row(row: tuple[Any, ...]) -> FeeTransaction:
    metadata = json.loads(row[15])
    promotion = metadata.get("promotion")
    refund = metadata.get("refund")
    return FeeTransaction(
        id=row[0],
        user_id=row[1],
        trade_id=row[2],
        trade_amount=Money.parse(row[3]),
        fee_amount=Money.parse(row[4]),
        fee_rate=Decimal(row[5]),
        fee_tier=FeeTier(row[6]),
        status=FeeStatus(row[7]),
        ledger_tx_hash=row[8],
        asset_code=row[9],
        asset_issuer=row[10],
        destination_address=row[11],
        failure_reason=row[12],
        failure_retryable=bool(row[13]),
        retry_count=row[14],
        volume=VolumeSnapshot.from_dict(metadata["volume"]),
        promotion=PromotionSnapshot.from_dict(promotion) if promotion else None,
        refund=RefundSnapshot.from_dict(refund) if refund else None,
        created_at=datetime.fromisoformat(row[16]),
        updated_at=datetime.fromisoformat(row[17]),
        collected_at=datetime.fromisoformat(row[18]) if row[18] else None,
        version=row[19],
    )


class SqliteFeeTransactionRepository(FeeTransactionRepository):
    """Async SQLite repository for fee transactions.

    Wraps FeeDatabase with typed read/write methods. All SQL access
    goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with FeeDatabase("data/fees.db") as database:
            repository = SqliteFeeTransactionRepository(database)
            await repository.create(txn)
    """

    def __init__(self, database: FeeDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def create(self, txn: FeeTransaction) -> FeeTransaction:
        row = _to_row(txn)
        row = row[:-1] + (0,)
        try:
            await self._database.db.execute(
                f"INSERT INTO fee_transactions ({_COLUMNS}) "
                f"VALUES ({', '.join('?' * len(row))})",
                row,
            )
        except sqlite3.IntegrityError as e:
            raise ConcurrentModification(txn.id, "already exists") from e
        await self._database.db.commit()

        logger.debug("fee_transaction_inserted", transaction_id=txn.id)
        return _from_row(row)

    async def update(self, txn: FeeTransaction, expected_version: int) -> FeeTransaction:
        """Compare-and-swap update: only succeeds if ``version`` is unchanged."""
        new_version = expected_version + 1
        row = _to_row(txn)
        # id and version are matched in the WHERE clause, everything else is SET
        assignments = ", ".join(f"{col.strip()} = ?" for col in _COLUMNS.split(",")[1:-1])
        cursor = await self._database.db.execute(
            f"UPDATE fee_transactions SET {assignments}, version = ? "
            "WHERE id = ? AND version = ?",
            (*row[1:-1], new_version, txn.id, expected_version),
        )
        await self._database.db.commit()

        if cursor.rowcount == 0:
            current = await self.get(txn.id)
            if current is None:
                raise NotFound(txn.id)
            raise ConcurrentModification(
                txn.id, f"expected version {expected_version}, found {current.version}"
            )

        logger.debug(
            "fee_transaction_updated",
            transaction_id=txn.id,
            status=txn.status.value,
            version=new_version,
        )
        return _from_row((*row[:-1], new_version))

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get(self, transaction_id: str) -> FeeTransaction | None:
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM fee_transactions WHERE id = ?",
            (transaction_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _from_row(tuple(row))

    async def find_by_status(
        self,
        status: FeeStatus,
        created_before: datetime | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[FeeTransaction]:
        conditions = ["status = ?"]
        params: list = [status.value]

        if created_before is not None:
            conditions.append("created_at < ?")
            params.append(created_before.isoformat())

        where = " AND ".join(conditions)
        params.extend((limit, offset))
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM fee_transactions WHERE {where} "
            "ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
            params,
        )
        rows = await cursor.fetchall()
        return [_from_row(tuple(row)) for row in rows]

    async def close(self) -> None:
        await self._database.close()
