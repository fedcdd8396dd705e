"""Configuration system using pydantic-settings with environment variable loading.

Fee rates, the high-volume threshold and the promotion table have no built-in
values: they are business inputs and must be supplied through the environment
(or a .env file), e.g.::

    FEES_TIER_RATES='{"STANDARD": "0.0010", "VIP": "0.0005"}'
    FEES_HIGH_VOLUME_THRESHOLD=100000
    FEES_PROMOTIONS='{"LAUNCH": {"rate": "0.0000", "expires_at": "2027-01-01T00:00:00Z"}}'
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feesettle.exceptions import InvalidAmount
from feesettle.models import FeeTier
from feesettle.money import Money, validate_rate


def _rate(value: Decimal) -> Decimal:
    try:
        return validate_rate(value)
    except InvalidAmount as e:
        raise ValueError(str(e)) from e


class PromotionSettings(BaseModel):
    """One entry of the promotion-code table."""

    rate: Decimal
    active: bool = True
    expires_at: datetime | None = None

    @field_validator("rate")
    @classmethod
    def _check_rate(cls, value: Decimal) -> Decimal:
        return _rate(value)


class FeePolicySettings(BaseSettings):
    """Fee tier rates, volume threshold and promotion codes."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    tier_rates: dict[FeeTier, Decimal] = {}
    high_volume_threshold: Decimal | None = None  # unset disables HIGH_VOLUME
    promotions: dict[str, PromotionSettings] = {}
    fallback_on_unknown_promotion: bool = False

    @field_validator("tier_rates")
    @classmethod
    def _check_tier_rates(cls, value: dict[FeeTier, Decimal]) -> dict[FeeTier, Decimal]:
        return {tier: _rate(rate) for tier, rate in value.items()}

    @field_validator("high_volume_threshold")
    @classmethod
    def _check_threshold(cls, value: Decimal | None) -> Decimal | None:
        if value is None:
            return None
        try:
            return Money.parse(value).amount
        except InvalidAmount as e:
            raise ValueError(str(e)) from e


class SettlementSettings(BaseSettings):
    """Settlement retry and recovery parameters."""

    model_config = SettingsConfigDict(env_prefix="SETTLEMENT_")

    max_retries: int = 5
    retry_base_delay: float = 1.0  # seconds; doubles per retry
    retry_max_delay: float = 300.0
    retry_backoff_schedule: list[float] = []  # explicit delays override the exponential curve
    submit_timeout_seconds: float = 30.0
    pending_stale_after_seconds: int = 900  # PENDING older than this on startup is reconciled
    scan_batch_size: int = 500

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @field_validator("scan_batch_size")
    @classmethod
    def _check_scan_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("scan_batch_size must be >= 1")
        return value


class LedgerSettings(BaseSettings):
    """Settlement ledger (Stellar) parameters."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    network: Literal["testnet", "public"] = "testnet"
    platform_wallet_address: str = ""  # default destination for collected fees


class DatabaseSettings(BaseSettings):
    """Fee transaction persistence."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "data/fees.db"


class ApiSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 3000
    prefix: str = "/api"
    version: str = "v1"
    cors_origins: list[str] = ["http://localhost:3000"]
    cors_credentials: bool = True

    @property
    def base_path(self) -> str:
        return f"{self.prefix.rstrip('/')}/{self.version}"


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    environment: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] | None = None  # None: json in production
    fees: FeePolicySettings = FeePolicySettings()
    settlement: SettlementSettings = SettlementSettings()
    ledger: LedgerSettings = LedgerSettings()
    database: DatabaseSettings = DatabaseSettings()
    api: ApiSettings = ApiSettings()
