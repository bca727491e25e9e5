"""
Public pricing: the active matrix for display and a quote for the caller's current tier.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.api.deps import get_current_user_id
from settlement.core.config import settings
from settlement.db.session import get_db
from settlement.schemas.pricing import QuoteOut
from settlement.services.pricing.resolver import PricingResolver
from settlement.utils.currency import format_minor

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("")
def list_pricing(db: Session = Depends(get_db)) -> dict:
    """Active tiers grouped entitlement type -> duration -> account tier."""
    return {"currency": settings.currency, "pricing": PricingResolver(db).grouped()}


@router.get("/quote", response_model=QuoteOut)
def quote(
    entitlement_type: str = Query(..., alias="entitlementType"),
    duration_days: int = Query(..., alias="durationDays"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    q = PricingResolver(db).quote(user_id, entitlement_type, duration_days)
    return QuoteOut(
        entitlement_type=q.entitlement_type.value,
        duration_days=q.duration_days,
        account_tier=q.account_tier.value,
        price_minor=q.price_minor,
        discount_percent=q.discount_percent,
        pricing_tier_id=q.pricing_tier_id,
        currency=settings.currency,
        display_price=format_minor(q.price_minor, settings.currency),
    )
