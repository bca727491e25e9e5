from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field

from settlement.schemas.base import CamelModel


class CallbackIn(CamelModel):
    external_txn_id: str = Field(min_length=1)
    gateway_status: str | None = None


class CallbackOut(CamelModel):
    external_txn_id: str
    status: str


class TransactionOut(CamelModel):
    id: str
    owner_id: str
    entitlement_type: str
    related_entity_id: str | None = None
    duration_days: int
    account_tier: str
    amount_minor: int
    discount_percent: int
    gateway: str
    external_txn_id: str
    status: str
    failure_reason: str | None = None
    created_at: datetime | None = None
    verified_at: datetime | None = None
    failed_at: datetime | None = None


class AdminTransactionOut(TransactionOut):
    pricing_tier_id: int | None = None
    redirect_target: str | None = None
    # model attribute is "meta"; the column and the wire name are "metadata"
    meta: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )


class TransactionListOut(CamelModel):
    total: int
    items: list[AdminTransactionOut]


class AuditEntryOut(CamelModel):
    actor_type: str
    actor_id: str | None = None
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class TransactionDetailOut(CamelModel):
    transaction: AdminTransactionOut
    audit: list[AuditEntryOut]
