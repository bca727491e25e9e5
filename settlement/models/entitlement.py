"""
Entitlement: the flag + expiry pair of one paid privilege on one entity,
keyed by (entity_type, entity_id, entitlement_type).
EntitlementGrant: immutable history row written once per activation.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from settlement.db.base import Base


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "entitlement_type", name="uq_entitlement_key"),
        Index("ix_entitlements_entity", "entity_type", "entity_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    entity_type = Column(String, nullable=False)            # ad / user
    entity_id = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    entitlement_type = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    # null + is_active = legacy grant, active indefinitely
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    granted_at = Column(DateTime(timezone=True), nullable=True)
    last_transaction_id = Column(String, nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String, nullable=True)
    revoke_reason = Column(Text, nullable=True)
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


class EntitlementGrant(Base):
    __tablename__ = "entitlement_grants"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    entitlement_id = Column(String, nullable=False, index=True)
    # one grant per transaction, storage-level guard against double activation
    transaction_id = Column(String, unique=True, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    entitlement_type = Column(String, nullable=False)
    duration_days = Column(Integer, nullable=False)
    previous_expires_at = Column(DateTime(timezone=True), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
