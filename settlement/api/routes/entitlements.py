from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from settlement.db.session import get_db
from settlement.services.entitlements.service import EntitlementService

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.get("/{entity_type}/{entity_id}")
def entity_entitlements(entity_type: str, entity_id: str, db: Session = Depends(get_db)) -> dict:
    """{entitlement_type: is_active} for badge rendering. Expiry is evaluated at read time."""
    return {
        "entityType": entity_type,
        "entityId": entity_id,
        "entitlements": EntitlementService(db).active_entitlements(entity_type, entity_id),
    }
