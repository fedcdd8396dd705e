"""Fee transaction persistence layer.

Provides the repository interface, an in-memory implementation, and the
SQLite database manager and repository.
"""

from feesettle.data.database import FeeDatabase
from feesettle.data.memory import InMemoryFeeTransactionRepository
from feesettle.data.repository import FeeTransactionRepository
from feesettle.data.store import SqliteFeeTransactionRepository

__all__ = [
    "FeeDatabase",
    "FeeTransactionRepository",
    "InMemoryFeeTransactionRepository",
    "SqliteFeeTransactionRepository",
]
