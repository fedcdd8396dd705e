"""Async SQLite connection for the fee transaction store.

aiosqlite keeps every query off the event loop. WAL mode lets readers run
while a settlement result is being written, and a busy timeout makes a second
process wait for the write lock instead of failing outright (version checks in
the repository still decide who wins).
"""

import os
from typing import Self

import aiosqlite

from feesettle.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS fee_transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    trade_id TEXT,
    trade_amount TEXT NOT NULL,
    fee_amount TEXT NOT NULL,
    fee_rate TEXT NOT NULL,
    fee_tier TEXT NOT NULL,
    status TEXT NOT NULL,
    ledger_tx_hash TEXT,
    asset_code TEXT NOT NULL,
    asset_issuer TEXT NOT NULL,
    destination_address TEXT,
    failure_reason TEXT,
    failure_retryable INTEGER NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    collected_at TEXT,
    version INTEGER NOT NULL DEFAULT 0
);

-- fee history per user, retry/recovery scans, tier reporting
CREATE INDEX IF NOT EXISTS idx_fee_user_created
    ON fee_transactions(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_fee_status_created
    ON fee_transactions(status, created_at);
CREATE INDEX IF NOT EXISTS idx_fee_tier
    ON fee_transactions(fee_tier);
"""


class FeeDatabase:
    """Owns the aiosqlite connection and the fee_transactions schema.

    Usage:
        async with FeeDatabase("data/fees.db") as database:
            repository = SqliteFeeTransactionRepository(database)

    ``":memory:"`` gives a throwaway database for one connection.
    """

    def __init__(self, db_path: str = "data/fees.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """The open connection. Raises RuntimeError before connect()."""
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open the database file (creating its directory) and apply the schema.

        Raises:
            RuntimeError: The file was written by a newer schema version.
        """
        if self._db_path != ":memory:":
            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        connection = await aiosqlite.connect(self._db_path)
        try:
            for pragma in _PRAGMAS:
                await connection.execute(pragma)
            await connection.executescript(_SCHEMA_SQL)
            await self._check_schema_version(connection)
            await connection.commit()
        except Exception:
            await connection.close()
            raise

        self._connection = connection
        logger.info("fee_db_connected", db_path=self._db_path, schema_version=SCHEMA_VERSION)

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("fee_db_closed", db_path=self._db_path)

    async def _check_schema_version(self, connection: aiosqlite.Connection) -> None:
        cursor = await connection.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        stored = row[0] if row else None

        if stored is None:
            await connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)
        elif stored > SCHEMA_VERSION:
            raise RuntimeError(
                f"{self._db_path} has schema version {stored}; "
                f"this build supports up to {SCHEMA_VERSION}"
            )

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
