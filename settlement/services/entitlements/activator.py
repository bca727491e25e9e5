"""
EntitlementActivator: grants the purchased entitlement for a verified transaction.

Called by TransactionLedger.mark_verified inside the locked unit of work; it
never commits. The grant row is locked before its expiry is read, so two
concurrent renewals of the same (entity, type) serialize instead of losing one.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core.errors import ValidationError
from settlement.models.entitlement import Entitlement, EntitlementGrant
from settlement.models.payment_transaction import PaymentTransaction
from settlement.models.types import EntityType, entity_type_for, parse_entitlement_type
from settlement.services.entitlements.evaluator import is_active
from settlement.utils.metrics import entitlement_activations_total
from settlement.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def compute_expiry(
    current_expires_at: datetime | None,
    currently_active: bool,
    duration_days: int,
    now: datetime,
) -> datetime | None:
    """
    Stack from whichever is later: now, or the unexpired current expiry.
    An active grant without expiry (legacy, indefinite) stays indefinite.
    """
    if currently_active and current_expires_at is None:
        return None
    start = ensure_utc(now)
    if currently_active and current_expires_at is not None:
        start = max(start, ensure_utc(current_expires_at))
    return start + timedelta(days=duration_days)


class EntitlementActivator:
    def __init__(self, db: Session):
        self.db = db

    def target_for(self, txn: PaymentTransaction) -> tuple[EntityType, str]:
        etype = parse_entitlement_type(txn.entitlement_type)
        entity_type = entity_type_for(etype)
        if entity_type == EntityType.AD:
            if not txn.related_entity_id:
                raise ValidationError("Ad boost transaction has no ad id", detail={"transaction_id": txn.id})
            return entity_type, txn.related_entity_id
        return entity_type, txn.owner_id

    def _lock_grant(self, entity_type: str, entity_id: str, entitlement_type: str) -> Entitlement | None:
        return (
            self.db.query(Entitlement)
            .filter(
                Entitlement.entity_type == entity_type,
                Entitlement.entity_id == entity_id,
                Entitlement.entitlement_type == entitlement_type,
            )
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )

    def _lock_or_create(self, entity_type: str, entity_id: str, owner_id: str, entitlement_type: str) -> Entitlement:
        grant = self._lock_grant(entity_type, entity_id, entitlement_type)
        if grant is not None:
            return grant
        try:
            with self.db.begin_nested():
                grant = Entitlement(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    owner_id=owner_id,
                    entitlement_type=entitlement_type,
                    is_active=False,
                )
                self.db.add(grant)
                self.db.flush()
            return grant
        except IntegrityError:
            # concurrent first purchase inserted the row; take its lock instead
            grant = self._lock_grant(entity_type, entity_id, entitlement_type)
            if grant is None:
                raise
            return grant

    def activate(self, txn: PaymentTransaction, now: datetime | None = None) -> EntitlementGrant:
        now = ensure_utc(now or utcnow())
        entity_type, entity_id = self.target_for(txn)
        grant = self._lock_or_create(entity_type.value, entity_id, txn.owner_id, txn.entitlement_type)

        was_active = is_active(grant, now)
        previous_expires_at = ensure_utc(grant.expires_at) if was_active else None
        new_expires_at = compute_expiry(previous_expires_at, was_active, txn.duration_days, now)

        grant.is_active = True
        grant.expires_at = new_expires_at
        grant.owner_id = txn.owner_id
        grant.last_transaction_id = txn.id
        if not was_active:
            grant.granted_at = now
        grant.revoked_at = None
        grant.revoked_by = None
        grant.revoke_reason = None
        self.db.add(grant)

        record = EntitlementGrant(
            entitlement_id=grant.id,
            transaction_id=txn.id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            entitlement_type=txn.entitlement_type,
            duration_days=txn.duration_days,
            previous_expires_at=previous_expires_at,
            starts_at=now,
            expires_at=new_expires_at,
        )
        self.db.add(record)
        self.db.flush()

        entitlement_activations_total.labels(entitlement_type=txn.entitlement_type).inc()
        logger.info(
            "entitlement_activated",
            extra={
                "transaction_id": txn.id,
                "external_txn_id": txn.external_txn_id,
                "owner_id": txn.owner_id,
                "entitlement_type": txn.entitlement_type,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "duration_days": txn.duration_days,
                "before": previous_expires_at.isoformat() if previous_expires_at else None,
                "after": new_expires_at.isoformat() if new_expires_at else "indefinite",
            },
        )
        return record
