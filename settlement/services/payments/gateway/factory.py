"""
Factory for creating payment gateways based on configuration.
"""
import logging

from settlement.core.config import settings
from settlement.services.payments.gateway.base import PaymentGateway
from settlement.services.payments.gateway.mock import MockGateway

logger = logging.getLogger(__name__)


class PaymentGatewayFactory:
    """Factory for creating payment gateways."""

    GATEWAYS: dict[str, type[PaymentGateway]] = {
        "mock": MockGateway,
    }

    @classmethod
    def create(cls, gateway_name: str, config: dict) -> PaymentGateway:
        """
        Create gateway instance by name.

        Raises:
            ValueError: If gateway name is unknown
        """
        gateway_class = cls.GATEWAYS.get(gateway_name.lower())
        if not gateway_class:
            available = ", ".join(cls.GATEWAYS.keys())
            raise ValueError(f"Unknown payment gateway: {gateway_name}. Available: {available}")
        logger.info("payment_gateway_created", extra={"path": gateway_name})
        return gateway_class(config)

    @classmethod
    def create_from_settings(cls) -> PaymentGateway:
        name = settings.payment_gateway
        config: dict = {"base_url": settings.public_base_url}
        if name == "mock":
            config["delay_seconds"] = settings.mock_gateway_delay_seconds
        config["storage"] = settings.mock_gateway_storage
        return cls.create(name, config)


_default_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """
    Gateway for request handlers (FastAPI dependency). Built once per process
    so request handlers share one gateway; services take it as an argument.
    """
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = PaymentGatewayFactory.create_from_settings()
    return _default_gateway
