"""
Lazy expiry: a grant is active iff its flag is set and its expiry is in the future.
Evaluated on every read; nothing here depends on the cleanup sweep having run.
"""
from datetime import datetime

from settlement.models.entitlement import Entitlement
from settlement.utils.time import ensure_utc, utcnow


def is_grant_active(is_active: bool, expires_at: datetime | None, now: datetime | None = None) -> bool:
    if not is_active:
        return False
    if expires_at is None:
        # legacy / grandfathered grant
        return True
    return ensure_utc(expires_at) > ensure_utc(now or utcnow())


def is_active(grant: Entitlement | None, now: datetime | None = None) -> bool:
    if grant is None:
        return False
    return is_grant_active(bool(grant.is_active), grant.expires_at, now)
