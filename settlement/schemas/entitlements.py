from datetime import datetime

from settlement.schemas.base import CamelModel


class EntitlementOut(CamelModel):
    id: str
    entity_type: str
    entity_id: str
    owner_id: str
    entitlement_type: str
    is_active: bool
    expires_at: datetime | None = None
    granted_at: datetime | None = None
    last_transaction_id: str | None = None
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    revoke_reason: str | None = None


class RevokeIn(CamelModel):
    entity_type: str
    entity_id: str
    entitlement_type: str
    reason: str


class CleanupOut(CamelModel):
    cleared: int


class GrantOut(CamelModel):
    id: str
    entitlement_id: str
    transaction_id: str
    entitlement_type: str
    duration_days: int
    previous_expires_at: datetime | None = None
    starts_at: datetime
    expires_at: datetime | None = None
