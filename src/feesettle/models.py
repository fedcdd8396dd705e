"""Shared data models for the fee settlement core.

CRITICAL: All monetary values use Money (fixed-scale Decimal) and rates use
Decimal. Never use float for amounts, fees, or rates.

These are plain records with no storage concerns; row mapping lives in
feesettle.data.store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from feesettle.money import Money


class FeeTier(str, Enum):
    """Classification that selects the fee rate for a trade."""

    STANDARD = "STANDARD"
    HIGH_VOLUME = "HIGH_VOLUME"
    VIP = "VIP"
    PROMOTIONAL = "PROMOTIONAL"


class FeeStatus(str, Enum):
    """Lifecycle status of a fee transaction."""

    PENDING = "PENDING"
    COLLECTED = "COLLECTED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class UserTier(str, Enum):
    """Caller-supplied user classification."""

    STANDARD = "STANDARD"
    VIP = "VIP"


@dataclass(frozen=True)
class UserContext:
    """What the core knows about the paying user at computation time."""

    user_id: str
    user_tier: UserTier = UserTier.STANDARD
    monthly_volume: Money = field(default_factory=Money.zero)
    promotion_code: str | None = None


@dataclass(frozen=True)
class FeeDecision:
    """Output of the fee policy engine for one trade."""

    fee_rate: Decimal
    fee_tier: FeeTier
    original_fee_rate: Decimal | None = None  # set when a promotion overrode the rate


@dataclass(frozen=True)
class FeeQuote:
    """Read-only fee quote returned to API callers."""

    fee_rate: Decimal
    fee_tier: FeeTier
    fee_amount: Money


# ──────────────────────────────────────────────
# Metadata snapshots (closed, versioned variants)
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class VolumeSnapshot:
    """User tier and monthly volume as seen when the fee was computed."""

    user_tier: UserTier
    monthly_volume: Money
    kind: str = field(default="volume", init=False)
    version: int = field(default=1, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "version": self.version,
            "user_tier": self.user_tier.value,
            "monthly_volume": str(self.monthly_volume),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VolumeSnapshot:
        _check_variant(data, "volume", 1)
        return cls(
            user_tier=UserTier(data["user_tier"]),
            monthly_volume=Money.parse(data["monthly_volume"]),
        )


@dataclass(frozen=True)
class PromotionSnapshot:
    """Promotion code that won tier selection and the rate it replaced."""

    code: str
    original_fee_rate: Decimal | None
    kind: str = field(default="promotion", init=False)
    version: int = field(default=1, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "version": self.version,
            "code": self.code,
            "original_fee_rate": (
                str(self.original_fee_rate) if self.original_fee_rate is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromotionSnapshot:
        _check_variant(data, "promotion", 1)
        original = data.get("original_fee_rate")
        return cls(
            code=data["code"],
            original_fee_rate=Decimal(original) if original is not None else None,
        )


@dataclass(frozen=True)
class RefundSnapshot:
    """Refund adjustment; keeps the collection time the record itself drops."""

    refunded_at: datetime
    refunded_amount: Money
    collected_at: datetime
    kind: str = field(default="refund", init=False)
    version: int = field(default=1, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "version": self.version,
            "refunded_at": self.refunded_at.isoformat(),
            "refunded_amount": str(self.refunded_amount),
            "collected_at": self.collected_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefundSnapshot:
        _check_variant(data, "refund", 1)
        return cls(
            refunded_at=datetime.fromisoformat(data["refunded_at"]),
            refunded_amount=Money.parse(data["refunded_amount"]),
            collected_at=datetime.fromisoformat(data["collected_at"]),
        )


def _check_variant(data: dict[str, Any], kind: str, version: int) -> None:
    if data.get("kind") != kind or data.get("version") != version:
        raise ValueError(
            f"Unsupported metadata variant {data.get('kind')!r} v{data.get('version')}"
            f" (expected {kind!r} v{version})"
        )


@dataclass(frozen=True)
class FeeTransaction:
    """A fee charged on one trade and its settlement state.

    Records are immutable; state changes produce new records via the
    functions in feesettle.settlement.state_machine. ``version`` is the
    optimistic-lock counter bumped by every persisted update.
    """

    id: str
    user_id: str
    trade_amount: Money
    fee_amount: Money
    fee_rate: Decimal
    fee_tier: FeeTier
    asset_code: str
    asset_issuer: str
    volume: VolumeSnapshot
    created_at: datetime
    updated_at: datetime
    status: FeeStatus = FeeStatus.PENDING
    trade_id: str | None = None
    destination_address: str | None = None
    ledger_tx_hash: str | None = None
    failure_reason: str | None = None
    failure_retryable: bool = False
    retry_count: int = 0
    promotion: PromotionSnapshot | None = None
    refund: RefundSnapshot | None = None
    collected_at: datetime | None = None
    version: int = 0

    @property
    def metadata(self) -> dict[str, Any]:
        """Metadata snapshots keyed by kind, in serialized form."""
        result: dict[str, Any] = {"volume": self.volume.to_dict()}
        if self.promotion is not None:
            result["promotion"] = self.promotion.to_dict()
        if self.refund is not None:
            result["refund"] = self.refund.to_dict()
        return result

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (Decimals and datetimes as strings)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "trade_id": self.trade_id,
            "trade_amount": str(self.trade_amount),
            "fee_amount": str(self.fee_amount),
            "fee_rate": str(self.fee_rate),
            "fee_tier": self.fee_tier.value,
            "status": self.status.value,
            "asset_code": self.asset_code,
            "asset_issuer": self.asset_issuer,
            "destination_address": self.destination_address,
            "ledger_tx_hash": self.ledger_tx_hash,
            "failure_reason": self.failure_reason,
            "retry_count": self.retry_count,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "collected_at": self.collected_at.isoformat() if self.collected_at else None,
            "version": self.version,
        }
