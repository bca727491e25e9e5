"""
Gateway callback and the owner's view of their transactions.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.api.deps import get_current_user_id, get_settlement_service
from settlement.core.errors import NotFoundError
from settlement.db.session import get_db
from settlement.schemas.transactions import CallbackIn, CallbackOut, TransactionOut
from settlement.services.payments.ledger import TransactionLedger
from settlement.services.payments.service import SettlementService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/callback", response_model=CallbackOut)
def payment_callback(body: CallbackIn, service: SettlementService = Depends(get_settlement_service)):
    """
    Gateway notification. Duplicate deliveries for a settled transaction
    answer 200 with the current status.
    """
    txn = service.handle_callback(body.external_txn_id, body.gateway_status)
    return CallbackOut(external_txn_id=txn.external_txn_id, status=txn.status)


@router.get("", response_model=list[TransactionOut])
def my_payments(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionLedger(db).list_for_owner(user_id, limit=limit, offset=offset)


@router.get("/{external_txn_id}", response_model=TransactionOut)
def get_payment(
    external_txn_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionLedger(db).get(external_txn_id)
    # other owners' transactions are reported as missing
    if txn is None or txn.owner_id != user_id:
        raise NotFoundError("Payment transaction not found", detail={"external_txn_id": external_txn_id})
    return txn
