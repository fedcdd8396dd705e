"""Shared test fixtures for the fee settlement core."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from feesettle.config import (
    AppSettings,
    DatabaseSettings,
    FeePolicySettings,
    LedgerSettings,
    PromotionSettings,
    SettlementSettings,
)
from feesettle.data.memory import InMemoryFeeTransactionRepository
from feesettle.ledger.paper_ledger import PaperLedger
from feesettle.models import FeeTier, FeeTransaction, UserTier, VolumeSnapshot
from feesettle.money import Money
from feesettle.policy.engine import FeePolicyEngine
from feesettle.settlement.coordinator import SettlementCoordinator
from feesettle.settlement.reconciliation import LoggingReconciler

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# Shape-valid Stellar account ids ("G" + 55 base32 characters)
PLATFORM_WALLET = "G" + "A" * 55
USDC_ISSUER = "G" + "B" * 55


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fee_settings() -> FeePolicySettings:
    """Test fee policy: 0.10% standard, 0.05% high volume, 0.08% VIP, FREE waives the fee."""
    return FeePolicySettings(
        tier_rates={
            FeeTier.STANDARD: Decimal("0.0010"),
            FeeTier.HIGH_VOLUME: Decimal("0.0005"),
            FeeTier.VIP: Decimal("0.0008"),
        },
        high_volume_threshold=Decimal("100000"),
        promotions={
            "LAUNCH": PromotionSettings(rate=Decimal("0.0002")),
            "FREE": PromotionSettings(rate=Decimal("0.0000")),
            "EXPIRED": PromotionSettings(
                rate=Decimal("0.0001"),
                expires_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            ),
            "PAUSED": PromotionSettings(rate=Decimal("0.0001"), active=False),
        },
    )


@pytest.fixture
def settlement_settings() -> SettlementSettings:
    """Three retries with no backoff delay so tests run instantly."""
    return SettlementSettings(
        max_retries=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        submit_timeout_seconds=1.0,
    )


@pytest.fixture
def policy(fee_settings: FeePolicySettings, now: datetime) -> FeePolicyEngine:
    return FeePolicyEngine(fee_settings, clock=lambda: now)


@pytest.fixture
def repository() -> InMemoryFeeTransactionRepository:
    return InMemoryFeeTransactionRepository()


@pytest.fixture
def ledger() -> PaperLedger:
    return PaperLedger()


@pytest.fixture
def reconciler() -> LoggingReconciler:
    return LoggingReconciler()


@pytest.fixture
def coordinator(
    policy: FeePolicyEngine,
    repository: InMemoryFeeTransactionRepository,
    ledger: PaperLedger,
    settlement_settings: SettlementSettings,
    reconciler: LoggingReconciler,
    now: datetime,
) -> SettlementCoordinator:
    return SettlementCoordinator(
        policy=policy,
        repository=repository,
        ledger=ledger,
        settings=settlement_settings,
        reconciler=reconciler,
        platform_wallet_address=PLATFORM_WALLET,
        clock=lambda: now,
    )


@pytest.fixture
def mock_settings(
    fee_settings: FeePolicySettings, settlement_settings: SettlementSettings
) -> AppSettings:
    """AppSettings with test defaults (in-memory storage, development errors)."""
    return AppSettings(
        environment="development",
        log_level="DEBUG",
        fees=fee_settings,
        settlement=settlement_settings,
        ledger=LedgerSettings(platform_wallet_address=PLATFORM_WALLET),
        database=DatabaseSettings(backend="memory"),
    )


@pytest.fixture
def make_transaction(now: datetime):
    """Factory for FeeTransaction records with sensible test defaults."""

    def _make(**overrides) -> FeeTransaction:
        fields = {
            "id": "txn-1",
            "user_id": "user-1",
            "trade_id": "trade-1",
            "trade_amount": Money.parse("1000"),
            "fee_amount": Money.parse("1"),
            "fee_rate": Decimal("0.0010"),
            "fee_tier": FeeTier.STANDARD,
            "asset_code": "USDC",
            "asset_issuer": USDC_ISSUER,
            "destination_address": PLATFORM_WALLET,
            "volume": VolumeSnapshot(user_tier=UserTier.STANDARD, monthly_volume=Money.zero()),
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return FeeTransaction(**fields)

    return _make
