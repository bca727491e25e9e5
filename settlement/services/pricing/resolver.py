"""
PricingResolver: (entitlement type, duration, account tier) -> price.

The payer's tier is re-derived on every resolution from the live business
verification grant; User.account_type is a cached label and is ignored.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core.errors import ConflictError, NotFoundError, ValidationError
from settlement.models.entitlement import Entitlement
from settlement.models.pricing_tier import PricingTier
from settlement.models.types import (
    AccountTier,
    EntitlementType,
    EntityType,
    parse_account_tier,
    parse_entitlement_type,
)
from settlement.models.user import User
from settlement.services.entitlements.evaluator import is_active
from settlement.utils.metrics import pricing_conflicts_total

logger = logging.getLogger(__name__)

# Marketplace launch matrix, minor units (paisa). Business rows are 30-40% off.
DEFAULT_PRICING: dict[str, dict[int, tuple[int, int]]] = {
    # type: {days: (individual, business)}
    "featured": {3: (50_000, 35_000), 7: (100_000, 70_000), 15: (180_000, 108_000)},
    "urgent": {3: (30_000, 21_000), 7: (60_000, 42_000), 15: (100_000, 60_000)},
    "sticky": {3: (15_000, 10_500), 7: (30_000, 21_000), 15: (50_000, 30_000)},
    "bump_up": {3: (15_000, 10_500), 7: (30_000, 21_000), 15: (50_000, 30_000)},
    "individual_verification": {30: (50_000, 50_000), 90: (120_000, 120_000), 365: (400_000, 400_000)},
    "business_verification": {30: (100_000, 100_000), 90: (250_000, 250_000), 365: (800_000, 800_000)},
}


@dataclass(frozen=True)
class PriceQuote:
    entitlement_type: EntitlementType
    duration_days: int
    account_tier: AccountTier
    price_minor: int
    discount_percent: int
    pricing_tier_id: int


def _validate_duration(duration_days: int) -> int:
    if not isinstance(duration_days, int) or isinstance(duration_days, bool) or duration_days <= 0:
        raise ValidationError(f"Invalid duration: {duration_days}. Must be a positive number of days.")
    return duration_days


class PricingResolver:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        entitlement_type: str | EntitlementType,
        duration_days: int,
        account_tier: str | AccountTier,
    ) -> PriceQuote:
        """
        Return the single active row for the triple.
        Zero rows -> NotFoundError. Several rows is a config defect: lowest id wins, with a warning.
        """
        etype = parse_entitlement_type(entitlement_type)
        tier = parse_account_tier(account_tier)
        _validate_duration(duration_days)

        rows = (
            self.db.query(PricingTier)
            .filter(
                PricingTier.entitlement_type == etype.value,
                PricingTier.duration_days == duration_days,
                PricingTier.account_tier == tier.value,
                PricingTier.active.is_(True),
            )
            .order_by(PricingTier.id.asc())
            .all()
        )
        if not rows:
            raise NotFoundError(
                "No active pricing for this entitlement",
                detail={
                    "entitlement_type": etype.value,
                    "duration_days": duration_days,
                    "account_tier": tier.value,
                },
            )
        if len(rows) > 1:
            pricing_conflicts_total.inc()
            logger.warning(
                "pricing_multiple_active_rows",
                extra={
                    "entitlement_type": etype.value,
                    "duration_days": duration_days,
                    "account_tier": tier.value,
                    "count": len(rows),
                },
            )
        row = rows[0]
        return PriceQuote(
            entitlement_type=etype,
            duration_days=duration_days,
            account_tier=tier,
            price_minor=row.price_minor,
            discount_percent=row.discount_percent or 0,
            pricing_tier_id=row.id,
        )

    def effective_account_tier(self, owner_id: str, now: datetime | None = None) -> AccountTier:
        """business only while verification is approved AND the grant has not lapsed."""
        user = self.db.query(User).filter(User.id == owner_id).one_or_none()
        if user is None or user.business_verification_status != "approved":
            return AccountTier.INDIVIDUAL
        grant = (
            self.db.query(Entitlement)
            .filter(
                Entitlement.entity_type == EntityType.USER.value,
                Entitlement.entity_id == owner_id,
                Entitlement.entitlement_type == EntitlementType.BUSINESS_VERIFICATION.value,
            )
            .one_or_none()
        )
        if not is_active(grant, now):
            return AccountTier.INDIVIDUAL
        return AccountTier.BUSINESS

    def quote(
        self,
        owner_id: str,
        entitlement_type: str | EntitlementType,
        duration_days: int,
        now: datetime | None = None,
    ) -> PriceQuote:
        tier = self.effective_account_tier(owner_id, now)
        return self.resolve(entitlement_type, duration_days, tier)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_active(self) -> list[PricingTier]:
        return (
            self.db.query(PricingTier)
            .filter(PricingTier.active.is_(True))
            .order_by(
                PricingTier.entitlement_type,
                PricingTier.duration_days,
                PricingTier.account_tier,
                PricingTier.id,
            )
            .all()
        )

    def grouped(self) -> dict[str, dict[int, dict[str, dict]]]:
        """{entitlement_type: {duration_days: {account_tier: {...}}}}; first (lowest id) row wins."""
        result: dict[str, dict[int, dict[str, dict]]] = {}
        for row in self.list_active():
            by_duration = result.setdefault(row.entitlement_type, {})
            by_tier = by_duration.setdefault(row.duration_days, {})
            if row.account_tier in by_tier:
                continue
            by_tier[row.account_tier] = {
                "id": row.id,
                "price_minor": row.price_minor,
                "discount_percent": row.discount_percent or 0,
            }
        return result

    def get(self, pricing_tier_id: int) -> PricingTier | None:
        return self.db.query(PricingTier).filter(PricingTier.id == pricing_tier_id).one_or_none()

    # ------------------------------------------------------------------
    # Admin management
    # ------------------------------------------------------------------

    def _lock_active_rows(self, entitlement_type: str, duration_days: int, account_tier: str) -> list[PricingTier]:
        # locks existing rows only; the partial unique index covers the first insert
        return (
            self.db.query(PricingTier)
            .filter(
                PricingTier.entitlement_type == entitlement_type,
                PricingTier.duration_days == duration_days,
                PricingTier.account_tier == account_tier,
                PricingTier.active.is_(True),
            )
            .with_for_update()
            .all()
        )

    def upsert(
        self,
        entitlement_type: str | EntitlementType,
        duration_days: int,
        account_tier: str | AccountTier,
        price_minor: int,
        discount_percent: int = 0,
    ) -> PricingTier:
        """Deactivate the current active row(s) for the triple and insert the new price."""
        etype = parse_entitlement_type(entitlement_type)
        tier = parse_account_tier(account_tier)
        _validate_duration(duration_days)
        if price_minor <= 0:
            raise ValidationError("Price must be greater than 0")
        if not 0 <= discount_percent <= 100:
            raise ValidationError("Discount must be between 0 and 100")

        previous = self._lock_active_rows(etype.value, duration_days, tier.value)
        for row in previous:
            row.active = False
            row.updated_at = datetime.now(timezone.utc)
            self.db.add(row)

        row = PricingTier(
            entitlement_type=etype.value,
            duration_days=duration_days,
            account_tier=tier.value,
            price_minor=price_minor,
            discount_percent=discount_percent,
            active=True,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            # a concurrent upsert inserted the first active row for this triple
            self.db.rollback()
            logger.warning(
                "pricing_upsert_conflict",
                extra={"entitlement_type": etype.value, "duration_days": duration_days, "account_tier": tier.value},
            )
            raise ConflictError(
                "Price for this tier was changed concurrently, retry",
                detail={"entitlement_type": etype.value, "duration_days": duration_days, "account_tier": tier.value},
            ) from None
        logger.info(
            "pricing_tier_upserted",
            extra={
                "entitlement_type": etype.value,
                "duration_days": duration_days,
                "account_tier": tier.value,
                "before": [p.price_minor for p in previous],
                "after": price_minor,
            },
        )
        return row

    def deactivate(self, pricing_tier_id: int) -> PricingTier:
        row = self.get(pricing_tier_id)
        if row is None:
            raise NotFoundError("Pricing tier not found", detail={"id": pricing_tier_id})
        if row.active:
            row.active = False
            self.db.add(row)
            self.db.flush()
            logger.info(
                "pricing_tier_deactivated",
                extra={"entitlement_type": row.entitlement_type, "duration_days": row.duration_days},
            )
        return row

    def seed_defaults(self) -> int:
        """Create the launch matrix if the table is empty. Returns number of rows created."""
        if self.db.query(PricingTier).count() > 0:
            return 0
        created = 0
        for etype, durations in DEFAULT_PRICING.items():
            for days, (individual, business) in durations.items():
                discount = round((individual - business) * 100 / individual) if individual else 0
                self.db.add(PricingTier(
                    entitlement_type=etype, duration_days=days, account_tier="individual",
                    price_minor=individual, discount_percent=0, active=True,
                ))
                self.db.add(PricingTier(
                    entitlement_type=etype, duration_days=days, account_tier="business",
                    price_minor=business, discount_percent=discount, active=True,
                ))
                created += 2
        self.db.flush()
        logger.info("default_pricing_seeded", extra={"count": created})
        return created
