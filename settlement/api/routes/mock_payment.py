"""
Mock checkout pages (only mounted when PAYMENT_GATEWAY=mock).
success / failure record the payer's choice with the mock gateway, then feed
the same callback path a real gateway notification would.
"""
from fastapi import APIRouter, Depends, Query

from settlement.api.deps import get_settlement_service
from settlement.core.config import settings
from settlement.services.payments.gateway import MockGateway, get_gateway
from settlement.services.payments.service import SettlementService

router = APIRouter(prefix="/mock-payment", tags=["mock-payment"])


@router.get("/checkout")
def checkout(
    txn_id: str = Query(..., alias="txnId"),
    amount: int | None = Query(None),
    product: str | None = Query(None),
) -> dict:
    base = settings.public_base_url.rstrip("/")
    return {
        "gateway": "mock",
        "message": "MOCK PAYMENT - FOR TESTING ONLY",
        "txnId": txn_id,
        "amount": amount,
        "product": product,
        "success": f"{base}/mock-payment/success?txnId={txn_id}",
        "failure": f"{base}/mock-payment/failure?txnId={txn_id}",
    }


@router.get("/success")
def success(
    txn_id: str = Query(..., alias="txnId"),
    gateway: MockGateway = Depends(get_gateway),
    service: SettlementService = Depends(get_settlement_service),
) -> dict:
    gateway.complete(txn_id)
    txn = service.handle_callback(txn_id, "completed", actor_id="mock_checkout")
    return {"externalTxnId": txn.external_txn_id, "status": txn.status}


@router.get("/failure")
def failure(
    txn_id: str = Query(..., alias="txnId"),
    gateway: MockGateway = Depends(get_gateway),
    service: SettlementService = Depends(get_settlement_service),
) -> dict:
    """Payer abandoned the mock checkout."""
    gateway.cancel(txn_id)
    txn = service.handle_callback(txn_id, "cancelled", actor_id="mock_checkout")
    return {"externalTxnId": txn.external_txn_id, "status": txn.status}
