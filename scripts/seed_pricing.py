#!/usr/bin/env python3
"""
Seed the launch pricing matrix (no-op when pricing_tiers already has rows)
and print the active tiers.
Run from the project root: python -m scripts.seed_pricing
"""
from settlement.core.config import settings
from settlement.db.base import Base
from settlement.db.session import SessionLocal, engine
from settlement.services.pricing.resolver import PricingResolver
from settlement.utils.currency import format_minor

# register every table on Base.metadata
from settlement.models import ad, audit_log, entitlement, payment_transaction, pricing_tier, user  # noqa: F401


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        resolver = PricingResolver(db)
        created = resolver.seed_defaults()
        db.commit()
        print(f"Created {created} pricing rows.\n" if created else "Pricing already present, nothing seeded.\n")
        for etype, durations in resolver.grouped().items():
            print(etype)
            for days, tiers in sorted(durations.items()):
                cells = ", ".join(
                    f"{tier}: {format_minor(row['price_minor'], settings.currency)}"
                    + (f" (-{row['discount_percent']}%)" if row["discount_percent"] else "")
                    for tier, row in sorted(tiers.items())
                )
                print(f"  {days:>3}d  {cells}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
