"""Tests for the in-memory fee transaction repository."""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from feesettle.data.memory import InMemoryFeeTransactionRepository
from feesettle.exceptions import ConcurrentModification, NotFound
from feesettle.models import FeeStatus


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_starts_at_version_zero(self, make_transaction) -> None:
        repository = InMemoryFeeTransactionRepository()
        stored = await repository.create(make_transaction(version=7))
        assert stored.version == 0
        assert await repository.get("txn-1") == stored

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self) -> None:
        assert await InMemoryFeeTransactionRepository().get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, make_transaction) -> None:
        repository = InMemoryFeeTransactionRepository()
        await repository.create(make_transaction())
        with pytest.raises(ConcurrentModification):
            await repository.create(make_transaction())


class TestCompareAndSwap:
    @pytest.mark.asyncio
    async def test_update_bumps_version(self, make_transaction) -> None:
        repository = InMemoryFeeTransactionRepository()
        txn = await repository.create(make_transaction())

        updated = await repository.update(replace(txn, status=FeeStatus.FAILED), txn.version)
        assert updated.version == 1
        assert (await repository.get("txn-1")).status is FeeStatus.FAILED

    @pytest.mark.asyncio
    async def test_stale_version_loses(self, make_transaction) -> None:
        repository = InMemoryFeeTransactionRepository()
        txn = await repository.create(make_transaction())
        await repository.update(txn, 0)

        with pytest.raises(ConcurrentModification, match="expected version 0, found 1"):
            await repository.update(txn, 0)

    @pytest.mark.asyncio
    async def test_update_unknown(self, make_transaction) -> None:
        with pytest.raises(NotFound):
            await InMemoryFeeTransactionRepository().update(make_transaction(), 0)


class TestFindByStatus:
    @pytest.mark.asyncio
    async def test_oldest_first_with_filters(self, make_transaction, now: datetime) -> None:
        repository = InMemoryFeeTransactionRepository()
        for offset, txn_id in [(2, "newest"), (0, "oldest"), (1, "middle")]:
            created = now + timedelta(minutes=offset)
            await repository.create(
                make_transaction(
                    id=txn_id,
                    status=FeeStatus.FAILED,
                    created_at=created,
                    updated_at=created,
                )
            )
        await repository.create(make_transaction(id="pending"))

        failed = await repository.find_by_status(FeeStatus.FAILED)
        assert [t.id for t in failed] == ["oldest", "middle", "newest"]

        limited = await repository.find_by_status(FeeStatus.FAILED, limit=2)
        assert [t.id for t in limited] == ["oldest", "middle"]

        second_page = await repository.find_by_status(FeeStatus.FAILED, limit=2, offset=2)
        assert [t.id for t in second_page] == ["newest"]
        assert await repository.find_by_status(FeeStatus.FAILED, limit=2, offset=3) == []

        before = await repository.find_by_status(
            FeeStatus.FAILED, created_before=now + timedelta(minutes=1)
        )
        assert [t.id for t in before] == ["oldest"]

    @pytest.mark.asyncio
    async def test_same_timestamp_ordered_by_id(self, make_transaction) -> None:
        repository = InMemoryFeeTransactionRepository()
        for txn_id in ["c", "a", "b"]:
            await repository.create(make_transaction(id=txn_id, status=FeeStatus.FAILED))

        first = await repository.find_by_status(FeeStatus.FAILED, limit=2)
        rest = await repository.find_by_status(FeeStatus.FAILED, limit=2, offset=2)
        assert [t.id for t in first + rest] == ["a", "b", "c"]
