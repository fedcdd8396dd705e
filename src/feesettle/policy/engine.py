"""Fee tier selection and fee-rate lookup.

All calculations use Decimal arithmetic exclusively -- no float conversions anywhere.

Tier selection order (first match wins):
  1. Active, non-expired promotion code  -> PROMOTIONAL (promotion's own rate)
  2. Monthly volume >= high-volume threshold -> HIGH_VOLUME
  3. User flagged VIP                     -> VIP
  4. Otherwise                            -> STANDARD

Rates, the threshold and the promotion table come from FeePolicySettings.
The engine holds no mutable state, so concurrent callers need no coordination.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal

from feesettle.config import FeePolicySettings, PromotionSettings
from feesettle.exceptions import FeeConfigurationError, UnknownPromotionCode
from feesettle.models import FeeDecision, FeeQuote, FeeTier, UserContext, UserTier
from feesettle.money import Money


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeePolicyEngine:
    """Maps a trade and its user context to a fee tier and rate.

    Args:
        settings: Tier rates, high-volume threshold and promotion codes.
        clock: Returns the current time; used for promotion expiry.
    """

    def __init__(
        self,
        settings: FeePolicySettings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._high_volume_threshold = (
            Money.parse(settings.high_volume_threshold)
            if settings.high_volume_threshold is not None
            else None
        )

    def compute_fee(self, trade_amount: Money, context: UserContext) -> FeeDecision:
        """Select the fee tier and rate for a trade.

        Args:
            trade_amount: Trade notional. Tiers are chosen from the user context
                only; the amount is part of the policy contract.
            context: User tier, monthly volume and optional promotion code.

        Returns:
            FeeDecision with the rate and tier. ``original_fee_rate`` is set
            when a promotion replaced the rate the user would otherwise pay.

        Raises:
            UnknownPromotionCode: ``context.promotion_code`` is not configured.
            FeeConfigurationError: The selected tier has no configured rate.
        """
        base_tier = self._base_tier(context)

        if context.promotion_code:
            promotion = self._lookup_promotion(context.promotion_code)
            if self._is_live(promotion):
                return FeeDecision(
                    fee_rate=promotion.rate,
                    fee_tier=FeeTier.PROMOTIONAL,
                    original_fee_rate=self._settings.tier_rates.get(base_tier),
                )

        return FeeDecision(fee_rate=self._rate_for(base_tier), fee_tier=base_tier)

    def quote(self, trade_amount: Money, context: UserContext) -> FeeQuote:
        """Compute the fee decision and the resulting fee amount (no side effects)."""
        decision = self.compute_fee(trade_amount, context)
        return FeeQuote(
            fee_rate=decision.fee_rate,
            fee_tier=decision.fee_tier,
            fee_amount=trade_amount.multiply_by_rate(decision.fee_rate),
        )

    def without_promotion(self, context: UserContext) -> UserContext:
        """Return a copy of ``context`` with the promotion code dropped."""
        return UserContext(
            user_id=context.user_id,
            user_tier=context.user_tier,
            monthly_volume=context.monthly_volume,
        )

    # ──────────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────────

    def _base_tier(self, context: UserContext) -> FeeTier:
        threshold = self._high_volume_threshold
        if threshold is not None and context.monthly_volume >= threshold:
            return FeeTier.HIGH_VOLUME
        if context.user_tier is UserTier.VIP:
            return FeeTier.VIP
        return FeeTier.STANDARD

    def _lookup_promotion(self, code: str) -> PromotionSettings:
        promotion = self._settings.promotions.get(code)
        if promotion is None:
            raise UnknownPromotionCode(code)
        return promotion

    def _is_live(self, promotion: PromotionSettings) -> bool:
        if not promotion.active:
            return False
        if promotion.expires_at is None:
            return True
        expires_at = promotion.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return self._clock() < expires_at

    def _rate_for(self, tier: FeeTier) -> Decimal:
        rate = self._settings.tier_rates.get(tier)
        if rate is None:
            raise FeeConfigurationError(f"No fee rate configured for tier {tier.value}")
        return rate
