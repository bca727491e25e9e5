"""
Base classes and types for payment gateways.
Used by factory and all gateways (mock; real processors plug in with the same interface).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class GatewayStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GatewayInitiation:
    """Result of initiate(): where to send the payer and the id callbacks will carry."""
    external_txn_id: str
    redirect_target: str


@dataclass(frozen=True)
class GatewayVerification:
    """Result of verify(). amount_minor is None when the gateway does not report it."""
    external_txn_id: str
    verified: bool
    status: GatewayStatus
    amount_minor: int | None = None
    reason: str | None = None


class PaymentGateway(ABC):
    """Base class for payment gateways. Gateways never touch the ledger."""

    name: str = "base"

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def initiate(
        self,
        amount_minor: int,
        product_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> GatewayInitiation:
        """Start a payment. Raises on transport/processor failure."""

    @abstractmethod
    def verify(self, external_txn_id: str) -> GatewayVerification:
        """Confirm the outcome of a payment with the processor."""

    @abstractmethod
    def status(self, external_txn_id: str) -> GatewayStatus:
        """Current processor-side status, used by reconciliation."""
