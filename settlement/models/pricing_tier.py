"""
PricingTier: admin-managed price matrix for entitlements.
Rows are soft-deactivated (active=False), never deleted.
At most one active row per (entitlement_type, duration_days, account_tier).
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text

from settlement.db.base import Base


class PricingTier(Base):
    __tablename__ = "pricing_tiers"
    __table_args__ = (
        Index("ix_pricing_tiers_lookup", "entitlement_type", "duration_days", "account_tier", "active"),
        # one active price per triple; deactivated history rows are unconstrained
        Index(
            "uq_pricing_tiers_active_key",
            "entitlement_type",
            "duration_days",
            "account_tier",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entitlement_type = Column(String, nullable=False)      # featured / urgent / ... / business_verification
    duration_days = Column(Integer, nullable=False)
    account_tier = Column(String, nullable=False)          # individual / business
    price_minor = Column(Integer, nullable=False)          # charged amount, minor currency units
    discount_percent = Column(Integer, nullable=False, default=0)  # display only, vs individual tier
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
