"""
PaymentTransaction: one purchase attempt and its settlement outcome.
external_txn_id is unique and is the idempotency key for gateway callbacks.
Status moves once: pending -> verified | failed.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from settlement.db.base import Base, JSONType


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id = Column(String, nullable=False, index=True)
    entitlement_type = Column(String, nullable=False)
    related_entity_id = Column(String, nullable=True)       # ad id for boosts, null for verifications
    duration_days = Column(Integer, nullable=False)
    account_tier = Column(String, nullable=False)           # tier the price was resolved for
    pricing_tier_id = Column(Integer, nullable=True)
    amount_minor = Column(Integer, nullable=False)
    discount_percent = Column(Integer, nullable=False, default=0)
    gateway = Column(String, nullable=False)
    external_txn_id = Column(String, unique=True, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    redirect_target = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    verified_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
