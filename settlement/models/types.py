"""
Enumerations shared by models, services and schemas.
Values are stored as plain strings in the database.
"""
from enum import Enum

from settlement.core.errors import ValidationError


class EntitlementType(str, Enum):
    FEATURED = "featured"
    URGENT = "urgent"
    STICKY = "sticky"
    BUMP_UP = "bump_up"
    INDIVIDUAL_VERIFICATION = "individual_verification"
    BUSINESS_VERIFICATION = "business_verification"


class AccountTier(str, Enum):
    INDIVIDUAL = "individual"
    BUSINESS = "business"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class EntityType(str, Enum):
    AD = "ad"
    USER = "user"


AD_BOOST_TYPES = frozenset({
    EntitlementType.FEATURED,
    EntitlementType.URGENT,
    EntitlementType.STICKY,
    EntitlementType.BUMP_UP,
})

VERIFICATION_TYPES = frozenset({
    EntitlementType.INDIVIDUAL_VERIFICATION,
    EntitlementType.BUSINESS_VERIFICATION,
})

# plain values: rows store the status as a string
TERMINAL_STATUSES = frozenset({TransactionStatus.VERIFIED.value, TransactionStatus.FAILED.value})


def parse_entitlement_type(value: str | EntitlementType) -> EntitlementType:
    try:
        return EntitlementType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown entitlement type: {value}",
            detail={"allowed": [t.value for t in EntitlementType]},
        ) from None


def parse_account_tier(value: str | AccountTier) -> AccountTier:
    try:
        return AccountTier(value)
    except ValueError:
        raise ValidationError(f"Unknown account tier: {value}") from None


def entity_type_for(entitlement_type: EntitlementType) -> EntityType:
    """Ad boosts are granted on the ad, verifications on the user."""
    if entitlement_type in AD_BOOST_TYPES:
        return EntityType.AD
    return EntityType.USER
