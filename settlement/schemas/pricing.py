from datetime import datetime

from pydantic import ConfigDict

from settlement.schemas.base import CamelModel


class PricingTierOut(CamelModel):
    id: int
    entitlement_type: str
    duration_days: int
    account_tier: str
    price_minor: int
    discount_percent: int
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PricingTierIn(CamelModel):
    model_config = ConfigDict(extra="ignore")  # admin UI may send id / active

    entitlement_type: str
    duration_days: int
    account_tier: str
    price_minor: int
    discount_percent: int = 0


class QuoteOut(CamelModel):
    entitlement_type: str
    duration_days: int
    account_tier: str
    price_minor: int
    discount_percent: int
    pricing_tier_id: int
    currency: str
    display_price: str
