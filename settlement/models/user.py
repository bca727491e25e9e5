"""
User: owned by the profile subsystem; read here for account tier derivation.
account_type is a cached label and is never trusted for pricing.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from settlement.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_type = Column(String, nullable=False, default="individual")
    # none / pending / approved / rejected / revoked / expired
    business_verification_status = Column(String, nullable=False, default="none")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
