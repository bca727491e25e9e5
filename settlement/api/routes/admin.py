"""
Admin API: pricing matrix, revocation, transaction ledger, reconciliation, flag sweep.
All routes require X-Admin-Key; X-Admin-Actor names the operator in audit entries.
"""
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from settlement.api.deps import get_settlement_service, require_admin
from settlement.core.errors import NotFoundError
from settlement.db.session import get_db
from settlement.schemas.entitlements import CleanupOut, EntitlementOut, GrantOut, RevokeIn
from settlement.schemas.pricing import PricingTierIn, PricingTierOut
from settlement.schemas.transactions import (
    AdminTransactionOut,
    AuditEntryOut,
    TransactionDetailOut,
    TransactionListOut,
)
from settlement.services.audit.service import AuditService
from settlement.services.entitlements.service import EntitlementService
from settlement.services.payments.ledger import TransactionLedger
from settlement.services.payments.service import SettlementService
from settlement.services.pricing.resolver import PricingResolver

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ---------- Pricing ----------
@router.get("/pricing", response_model=list[PricingTierOut])
def pricing_list(db: Session = Depends(get_db)):
    return PricingResolver(db).list_active()


@router.put("/pricing", response_model=PricingTierOut)
def pricing_upsert(
    body: PricingTierIn,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    row = PricingResolver(db).upsert(
        body.entitlement_type,
        body.duration_days,
        body.account_tier,
        body.price_minor,
        body.discount_percent,
    )
    AuditService(db).log(
        "admin", actor, "pricing_tier_upserted", "pricing_tier", str(row.id),
        body.model_dump(),
        commit=False,
    )
    db.commit()
    db.refresh(row)
    return row


@router.delete("/pricing/{pricing_tier_id}", response_model=PricingTierOut)
def pricing_deactivate(
    pricing_tier_id: int,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    row = PricingResolver(db).deactivate(pricing_tier_id)
    AuditService(db).log(
        "admin", actor, "pricing_tier_deactivated", "pricing_tier", str(row.id),
        {"entitlement_type": row.entitlement_type, "duration_days": row.duration_days, "account_tier": row.account_tier},
        commit=False,
    )
    db.commit()
    db.refresh(row)
    return row


@router.post("/pricing/seed")
def pricing_seed(actor: str = Depends(require_admin), db: Session = Depends(get_db)):
    created = PricingResolver(db).seed_defaults()
    if created:
        AuditService(db).log("admin", actor, "pricing_seeded", "pricing_tier", None, {"count": created}, commit=False)
    db.commit()
    return {"created": created}


# ---------- Entitlements ----------
@router.get("/entitlements/{entity_type}/{entity_id}", response_model=list[EntitlementOut])
def entitlements_for_entity(entity_type: str, entity_id: str, db: Session = Depends(get_db)):
    return EntitlementService(db).list_for_entity(entity_type, entity_id)


@router.get("/grants/{entitlement_id}", response_model=list[GrantOut])
def grant_history(entitlement_id: str, db: Session = Depends(get_db)):
    """Activation history of one entitlement, oldest first."""
    return EntitlementService(db).grant_history(entitlement_id)


@router.post("/entitlements/revoke", response_model=EntitlementOut)
def entitlements_revoke(
    body: RevokeIn,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return EntitlementService(db).revoke(
        body.entity_type,
        body.entity_id,
        body.entitlement_type,
        body.reason,
        actor,
    )


@router.post("/entitlements/cleanup", response_model=CleanupOut)
def entitlements_cleanup(db: Session = Depends(get_db)):
    return CleanupOut(cleared=EntitlementService(db).clear_stale_flags())


# ---------- Transactions ----------
@router.get("/transactions", response_model=TransactionListOut)
def transactions_list(
    status: str | None = Query(None),
    owner_id: str | None = Query(None, alias="ownerId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    total, items = TransactionLedger(db).list_recent(status=status, owner_id=owner_id, limit=limit, offset=offset)
    return TransactionListOut(total=total, items=[AdminTransactionOut.model_validate(t) for t in items])


@router.get("/transactions/{transaction_id}", response_model=TransactionDetailOut)
def transaction_detail(transaction_id: str, db: Session = Depends(get_db)):
    txn = TransactionLedger(db).get_by_id(transaction_id)
    if txn is None:
        raise NotFoundError("Payment transaction not found", detail={"id": transaction_id})
    audit = AuditService(db).list_for_entity("payment_transaction", txn.id)
    return TransactionDetailOut(
        transaction=AdminTransactionOut.model_validate(txn),
        audit=[AuditEntryOut.model_validate(a) for a in audit],
    )


@router.post("/transactions/{external_txn_id}/notes", response_model=AdminTransactionOut)
def transactions_annotate(
    external_txn_id: str,
    key: str = Body(..., embed=True, min_length=1),
    value: Any = Body(None, embed=True),
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ledger = TransactionLedger(db)
    txn = ledger.annotate(external_txn_id, key, {"value": value, "by": actor})
    return AdminTransactionOut.model_validate(txn)


@router.post("/reconcile")
def reconcile(service: SettlementService = Depends(get_settlement_service)) -> dict:
    return service.reconcile_pending()
