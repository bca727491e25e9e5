"""
Payment gateway abstraction with a deterministic mock.
"""
from .base import (
    GatewayInitiation,
    GatewayStatus,
    GatewayVerification,
    PaymentGateway,
)
from .factory import PaymentGatewayFactory, get_gateway
from .mock import FAILURE_MARKER, MockGateway, is_failure_marked

__all__ = [
    "GatewayInitiation",
    "GatewayStatus",
    "GatewayVerification",
    "PaymentGateway",
    "PaymentGatewayFactory",
    "get_gateway",
    "FAILURE_MARKER",
    "MockGateway",
    "is_failure_marked",
]
