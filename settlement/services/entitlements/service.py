"""
EntitlementService: read contract (is_active) and administrative revocation.

Reads evaluate expiry lazily; revocation is independent of the payment ledger
and never refunds.
"""
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from settlement.core.errors import NotFoundError, ValidationError
from settlement.models.entitlement import Entitlement, EntitlementGrant
from settlement.models.types import (
    AD_BOOST_TYPES,
    VERIFICATION_TYPES,
    EntitlementType,
    EntityType,
    entity_type_for,
    parse_entitlement_type,
)
from settlement.models.user import User
from settlement.services.audit.service import AuditService
from settlement.services.entitlements.evaluator import is_active as grant_is_active
from settlement.utils.metrics import entitlement_revocations_total
from settlement.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _parse_entity_type(value: str | EntityType) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise ValidationError(f"Unknown entity type: {value}") from None


def types_for_entity(entity_type: EntityType) -> list[EntitlementType]:
    pool = AD_BOOST_TYPES if entity_type == EntityType.AD else VERIFICATION_TYPES
    return sorted(pool, key=lambda t: t.value)


class EntitlementService:
    def __init__(self, db: Session, audit: AuditService | None = None):
        self.db = db
        self.audit = audit or AuditService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entity_type: str | EntityType, entity_id: str, entitlement_type: str | EntitlementType) -> Entitlement | None:
        etype = parse_entitlement_type(entitlement_type)
        return (
            self.db.query(Entitlement)
            .filter(
                Entitlement.entity_type == _parse_entity_type(entity_type).value,
                Entitlement.entity_id == entity_id,
                Entitlement.entitlement_type == etype.value,
            )
            .one_or_none()
        )

    def is_active(
        self,
        entity_type: str | EntityType,
        entity_id: str,
        entitlement_type: str | EntitlementType,
        now: datetime | None = None,
    ) -> bool:
        return grant_is_active(self.get(entity_type, entity_id, entitlement_type), now)

    def active_entitlements(
        self,
        entity_type: str | EntityType,
        entity_id: str,
        now: datetime | None = None,
    ) -> dict[str, bool]:
        """{entitlement_type: is_active} for every type applicable to the entity."""
        etype = _parse_entity_type(entity_type)
        grants = {
            g.entitlement_type: g
            for g in self.db.query(Entitlement)
            .filter(Entitlement.entity_type == etype.value, Entitlement.entity_id == entity_id)
            .all()
        }
        now = now or utcnow()
        return {t.value: grant_is_active(grants.get(t.value), now) for t in types_for_entity(etype)}

    def list_for_entity(self, entity_type: str | EntityType, entity_id: str) -> list[Entitlement]:
        return (
            self.db.query(Entitlement)
            .filter(
                Entitlement.entity_type == _parse_entity_type(entity_type).value,
                Entitlement.entity_id == entity_id,
            )
            .order_by(Entitlement.entitlement_type)
            .all()
        )

    def grant_history(self, entitlement_id: str) -> list[EntitlementGrant]:
        return (
            self.db.query(EntitlementGrant)
            .filter(EntitlementGrant.entitlement_id == entitlement_id)
            .order_by(EntitlementGrant.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(
        self,
        entity_type: str | EntityType,
        entity_id: str,
        entitlement_type: str | EntitlementType,
        reason: str,
        actor_id: str,
        now: datetime | None = None,
    ) -> Entitlement:
        """Clear flag and expiry immediately, whatever duration remains. No refund."""
        etype = parse_entitlement_type(entitlement_type)
        ent_type = _parse_entity_type(entity_type)
        if entity_type_for(etype) != ent_type:
            raise ValidationError(
                f"{etype.value} cannot be held by entity type {ent_type.value}"
            )
        if not reason or not reason.strip():
            raise ValidationError("Reason for revocation is required")
        now = now or utcnow()

        try:
            grant = (
                self.db.query(Entitlement)
                .filter(
                    Entitlement.entity_type == ent_type.value,
                    Entitlement.entity_id == entity_id,
                    Entitlement.entitlement_type == etype.value,
                )
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if grant is None:
                raise NotFoundError(
                    "Entitlement not found",
                    detail={"entity_type": ent_type.value, "entity_id": entity_id, "entitlement_type": etype.value},
                )

            before = {
                "is_active": grant.is_active,
                "expires_at": ensure_utc(grant.expires_at).isoformat() if grant.expires_at else None,
                "effective": grant_is_active(grant, now),
            }
            grant.is_active = False
            grant.expires_at = None
            grant.revoked_at = now
            grant.revoked_by = actor_id
            grant.revoke_reason = reason.strip()
            self.db.add(grant)

            if etype == EntitlementType.BUSINESS_VERIFICATION:
                user = self.db.query(User).filter(User.id == entity_id).with_for_update().one_or_none()
                if user is not None and user.business_verification_status == "approved":
                    user.business_verification_status = "revoked"
                    user.account_type = "individual"
                    self.db.add(user)

            self.audit.log(
                "admin", actor_id, "entitlement_revoked", "entitlement", grant.id,
                {
                    "entity_type": ent_type.value,
                    "entity_id": entity_id,
                    "entitlement_type": etype.value,
                    "reason": grant.revoke_reason,
                    "before": before,
                    "after": {"is_active": False, "expires_at": None},
                },
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        entitlement_revocations_total.labels(entitlement_type=etype.value).inc()
        logger.warning(
            "entitlement_revoked",
            extra={
                "actor_id": actor_id,
                "entity_type": ent_type.value,
                "entity_id": entity_id,
                "entitlement_type": etype.value,
                "reason": grant.revoke_reason,
                "before": before,
                "after": {"is_active": False},
            },
        )
        return grant

    # ------------------------------------------------------------------
    # Optional sweep (query ergonomics only)
    # ------------------------------------------------------------------

    def clear_stale_flags(self, now: datetime | None = None) -> int:
        """Set is_active=False on grants whose expiry passed. Expiry is kept for history."""
        now = now or utcnow()
        result = self.db.execute(
            update(Entitlement)
            .where(
                Entitlement.is_active.is_(True),
                Entitlement.expires_at.isnot(None),
                Entitlement.expires_at <= now,
            )
            .values(is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        cleared = result.rowcount or 0
        logger.info("entitlement_flags_cleared", extra={"count": cleared})
        return cleared
