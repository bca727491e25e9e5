"""
MockGateway: deterministic stand-in for a real processor.

Any external_txn_id starting with FAILURE_MARKER resolves to failed after a
simulated delay. Every other id stays pending until the payer finishes the
mock checkout (complete()), then verifies with the amount that was issued.
Checkout state lives in Redis so the API and the Celery reconciler agree;
memory storage is used when storage=memory (single process, tests).
No network I/O besides the store.
"""
import logging
import secrets
import threading
import time
from typing import Any
from urllib.parse import urlencode

import redis

from settlement.core.config import settings
from settlement.services.payments.gateway.base import (
    GatewayInitiation,
    GatewayStatus,
    GatewayVerification,
    PaymentGateway,
)

logger = logging.getLogger(__name__)

FAILURE_MARKER = "FAIL_"
ID_PREFIX = "MOCK_"


def is_failure_marked(external_txn_id: str) -> bool:
    return external_txn_id.startswith(FAILURE_MARKER)


class MemoryCheckoutStore:
    """Checkout state for one process: txn id -> (status, amount_minor)."""

    def __init__(self) -> None:
        self._checkouts: dict[str, tuple[str, int]] = {}
        self._lock = threading.Lock()

    def record(self, external_txn_id: str, amount_minor: int) -> None:
        with self._lock:
            self._checkouts[external_txn_id] = (GatewayStatus.PENDING.value, amount_minor)

    def get(self, external_txn_id: str) -> tuple[str, int] | None:
        with self._lock:
            return self._checkouts.get(external_txn_id)

    def set_status(self, external_txn_id: str, status: GatewayStatus) -> bool:
        with self._lock:
            current = self._checkouts.get(external_txn_id)
            if current is None:
                return False
            self._checkouts[external_txn_id] = (status.value, current[1])
            return True


class RedisCheckoutStore:
    """Redis-backed checkout state, shared by API replicas and Celery workers."""

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        # outlive the pending timeout so the reconciler still sees the checkout
        self.ttl_seconds = ttl_seconds or settings.pending_timeout_hours * 3600 * 2

    @staticmethod
    def _key(external_txn_id: str) -> str:
        return f"mock_checkout:{external_txn_id}"

    def record(self, external_txn_id: str, amount_minor: int) -> None:
        key = self._key(external_txn_id)
        self.client.hset(key, mapping={"status": GatewayStatus.PENDING.value, "amount": str(amount_minor)})
        self.client.expire(key, self.ttl_seconds)

    def get(self, external_txn_id: str) -> tuple[str, int] | None:
        raw = self.client.hgetall(self._key(external_txn_id))
        if not raw:
            return None
        return raw["status"], int(raw["amount"])

    def set_status(self, external_txn_id: str, status: GatewayStatus) -> bool:
        key = self._key(external_txn_id)
        if not self.client.exists(key):
            return False
        self.client.hset(key, "status", status.value)
        return True


def build_checkout_store(storage: str):
    if storage == "memory":
        return MemoryCheckoutStore()
    return RedisCheckoutStore()


class MockGateway(PaymentGateway):
    name = "mock"

    def __init__(self, config: dict) -> None:
        super().__init__(config)
        self.delay_seconds = float(config.get("delay_seconds", 0.0))
        self.base_url = config.get("base_url", "http://localhost:8000").rstrip("/")
        self.store = config.get("store") or build_checkout_store(config.get("storage", "memory"))

    def initiate(
        self,
        amount_minor: int,
        product_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> GatewayInitiation:
        metadata = metadata or {}
        txn_id = f"{ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(6)}"
        if metadata.get("simulate_failure"):
            txn_id = f"{FAILURE_MARKER}{txn_id}"
        self.store.record(txn_id, amount_minor)
        query = urlencode({"txnId": txn_id, "amount": amount_minor, "product": product_ref})
        logger.info(
            "mock_gateway_initiated",
            extra={"external_txn_id": txn_id, "amount_minor": amount_minor},
        )
        return GatewayInitiation(
            external_txn_id=txn_id,
            redirect_target=f"{self.base_url}/mock-payment/checkout?{query}",
        )

    # Checkout page actions (not part of the gateway interface)

    def complete(self, external_txn_id: str) -> bool:
        """Payer confirmed the mock checkout. Failure-marked ids cannot be completed."""
        if is_failure_marked(external_txn_id):
            return False
        known = self.store.set_status(external_txn_id, GatewayStatus.COMPLETED)
        logger.info(
            "mock_checkout_completed",
            extra={"external_txn_id": external_txn_id, "after": "recorded" if known else "unknown"},
        )
        return known

    def cancel(self, external_txn_id: str) -> bool:
        known = self.store.set_status(external_txn_id, GatewayStatus.FAILED)
        logger.info(
            "mock_checkout_cancelled",
            extra={"external_txn_id": external_txn_id, "after": "recorded" if known else "unknown"},
        )
        return known

    def verify(self, external_txn_id: str) -> GatewayVerification:
        if is_failure_marked(external_txn_id):
            self._simulate_delay()
            return GatewayVerification(
                external_txn_id=external_txn_id,
                verified=False,
                status=GatewayStatus.FAILED,
                reason="mock_failure_marker",
            )
        checkout = self.store.get(external_txn_id)
        if checkout is None:
            # never issued here, or expired from the store: nothing was paid
            return GatewayVerification(
                external_txn_id=external_txn_id,
                verified=False,
                status=GatewayStatus.PENDING,
                reason="mock_unknown_checkout",
            )
        status, amount = GatewayStatus(checkout[0]), checkout[1]
        if status == GatewayStatus.COMPLETED:
            return GatewayVerification(
                external_txn_id=external_txn_id,
                verified=True,
                status=status,
                amount_minor=amount,
            )
        return GatewayVerification(
            external_txn_id=external_txn_id,
            verified=False,
            status=status,
            reason="mock_checkout_cancelled" if status == GatewayStatus.FAILED else None,
        )

    def status(self, external_txn_id: str) -> GatewayStatus:
        if is_failure_marked(external_txn_id):
            self._simulate_delay()
            return GatewayStatus.FAILED
        checkout = self.store.get(external_txn_id)
        if checkout is None:
            return GatewayStatus.PENDING
        return GatewayStatus(checkout[0])

    def _simulate_delay(self) -> None:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)
