"""Tests for fee transaction records and their versioned metadata snapshots."""

from datetime import datetime
from decimal import Decimal

import pytest

from feesettle.models import (
    FeeStatus,
    PromotionSnapshot,
    RefundSnapshot,
    UserContext,
    UserTier,
    VolumeSnapshot,
)
from feesettle.money import Money


class TestSnapshots:
    def test_volume_snapshot_dict(self) -> None:
        snapshot = VolumeSnapshot(user_tier=UserTier.VIP, monthly_volume=Money.parse("42"))
        assert snapshot.to_dict() == {
            "kind": "volume",
            "version": 1,
            "user_tier": "VIP",
            "monthly_volume": "42.0000000",
        }
        assert VolumeSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_promotion_snapshot_without_base_rate(self) -> None:
        snapshot = PromotionSnapshot(code="LAUNCH", original_fee_rate=None)
        assert snapshot.to_dict()["original_fee_rate"] is None
        assert PromotionSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_refund_snapshot_dict(self, now: datetime) -> None:
        snapshot = RefundSnapshot(
            refunded_at=now, refunded_amount=Money.parse("1"), collected_at=now
        )
        assert snapshot.to_dict()["refunded_at"] == "2026-03-01T12:00:00+00:00"
        assert RefundSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_wrong_kind_rejected(self) -> None:
        data = PromotionSnapshot(code="X", original_fee_rate=Decimal("0.001")).to_dict()
        with pytest.raises(ValueError, match="Unsupported metadata variant"):
            VolumeSnapshot.from_dict(data)

    def test_unknown_version_rejected(self) -> None:
        data = VolumeSnapshot(user_tier=UserTier.STANDARD, monthly_volume=Money.zero()).to_dict()
        data["version"] = 2
        with pytest.raises(ValueError):
            VolumeSnapshot.from_dict(data)


class TestFeeTransaction:
    def test_defaults(self, make_transaction) -> None:
        txn = make_transaction()
        assert txn.status is FeeStatus.PENDING
        assert txn.retry_count == 0
        assert txn.version == 0
        assert txn.collected_at is None

    def test_metadata_only_lists_present_snapshots(self, make_transaction) -> None:
        assert set(make_transaction().metadata) == {"volume"}
        promoted = make_transaction(
            promotion=PromotionSnapshot(code="LAUNCH", original_fee_rate=Decimal("0.0010"))
        )
        assert set(promoted.metadata) == {"volume", "promotion"}

    def test_to_dict_is_json_safe(self, make_transaction) -> None:
        data = make_transaction().to_dict()
        assert data["trade_amount"] == "1000.0000000"
        assert data["fee_amount"] == "1.0000000"
        assert data["fee_rate"] == "0.0010"
        assert data["status"] == "PENDING"
        assert data["created_at"] == "2026-03-01T12:00:00+00:00"
        assert data["collected_at"] is None

    def test_user_context_defaults(self) -> None:
        user = UserContext(user_id="user-1")
        assert user.user_tier is UserTier.STANDARD
        assert user.monthly_volume == Money.zero()
        assert user.promotion_code is None
