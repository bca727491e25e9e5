"""
Request-scoped dependencies: caller identity, admin guard, settlement service wiring.
"""
import secrets

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.db.session import get_db
from settlement.services.payments.gateway import PaymentGateway, get_gateway
from settlement.services.payments.rate_limit import PurchaseRateLimiter
from settlement.services.payments.service import SettlementService

ADMIN_KEY_HEADER = "X-Admin-Key"
ADMIN_ACTOR_HEADER = "X-Admin-Actor"

_rate_limiter: PurchaseRateLimiter | None = None


def get_current_user_id(request: Request) -> str:
    """Owner id set by the upstream auth gateway."""
    user_id = (request.headers.get(settings.user_id_header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user_id


def require_admin(request: Request) -> str:
    """Check X-Admin-Key and return the acting admin id (X-Admin-Actor or "admin")."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled")
    provided = request.headers.get(ADMIN_KEY_HEADER) or ""
    if not secrets.compare_digest(provided.encode(), settings.admin_api_key.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin key")
    return (request.headers.get(ADMIN_ACTOR_HEADER) or "admin").strip() or "admin"


def get_rate_limiter() -> PurchaseRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = PurchaseRateLimiter()
    return _rate_limiter


def get_settlement_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    rate_limiter: PurchaseRateLimiter = Depends(get_rate_limiter),
) -> SettlementService:
    return SettlementService(db, gateway, rate_limiter=rate_limiter)
