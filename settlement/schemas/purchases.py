from settlement.schemas.base import CamelModel


class PurchaseIn(CamelModel):
    entitlement_type: str
    duration_days: int
    related_entity_id: str | None = None  # ad id for boosts; omitted for verifications
    simulate_failure: bool = False


class PurchaseOut(CamelModel):
    transaction_id: str
    external_txn_id: str
    redirect_target: str
    amount_minor: int
    discount_percent: int
    account_tier: str
    status: str
