"""
Ad: owned by the ads subsystem; read here to check boost eligibility.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from settlement.db.base import Base

PROMOTABLE_AD_STATUSES = frozenset({"active", "approved"})


class Ad(Base):
    __tablename__ = "ads"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")  # pending / active / approved / suspended / deleted
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def is_promotable(self) -> bool:
        return self.status in PROMOTABLE_AD_STATUSES
