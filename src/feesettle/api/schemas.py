"""Request bodies for the fee API.

Amounts travel as decimal strings and are parsed into Money by the routes, so
precision problems surface as InvalidAmount (400) rather than float rounding.
"""

from pydantic import BaseModel, Field

from feesettle.models import UserContext, UserTier
from feesettle.money import Money


class UserContextBody(BaseModel):
    user_id: str = Field(min_length=1)
    user_tier: UserTier = UserTier.STANDARD
    monthly_volume: str = "0"
    promotion_code: str | None = None

    def to_context(self) -> UserContext:
        return UserContext(
            user_id=self.user_id,
            user_tier=self.user_tier,
            monthly_volume=Money.parse(self.monthly_volume),
            promotion_code=self.promotion_code or None,
        )


class QuoteBody(BaseModel):
    trade_amount: str
    user: UserContextBody


class SettlementBody(BaseModel):
    trade_id: str | None = None
    trade_amount: str
    user: UserContextBody
    asset_code: str = Field(min_length=1, max_length=12)
    asset_issuer: str = ""
    destination_address: str | None = None
