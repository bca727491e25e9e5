from fastapi import APIRouter, Depends, status

from settlement.api.deps import get_current_user_id, get_settlement_service
from settlement.schemas.purchases import PurchaseIn, PurchaseOut
from settlement.services.payments.service import SettlementService

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.post("", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
def create_purchase(
    body: PurchaseIn,
    user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
):
    """Price the entitlement, open a pending transaction and return the gateway redirect."""
    result = service.purchase(
        user_id,
        body.entitlement_type,
        body.duration_days,
        body.related_entity_id,
        simulate_failure=body.simulate_failure,
    )
    txn = result.transaction
    return PurchaseOut(
        transaction_id=txn.id,
        external_txn_id=txn.external_txn_id,
        redirect_target=result.redirect_target,
        amount_minor=txn.amount_minor,
        discount_percent=txn.discount_percent,
        account_tier=txn.account_tier,
        status=txn.status,
    )
