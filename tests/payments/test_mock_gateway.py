"""Tests for MockGateway and PaymentGatewayFactory."""
from unittest.mock import MagicMock, patch

import pytest

from settlement.services.payments.gateway import (
    FAILURE_MARKER,
    GatewayStatus,
    MockGateway,
    PaymentGatewayFactory,
    is_failure_marked,
)
from settlement.services.payments.gateway.mock import MemoryCheckoutStore, RedisCheckoutStore


@pytest.fixture
def mock_gw():
    return MockGateway({"delay_seconds": 0, "base_url": "http://pay.local/"})


class TestMockGateway:
    def test_initiate_returns_redirect(self, mock_gw):
        init = mock_gw.initiate(500, "featured:7d")
        assert init.external_txn_id.startswith("MOCK_")
        assert init.redirect_target.startswith("http://pay.local/mock-payment/checkout?")
        assert f"txnId={init.external_txn_id}" in init.redirect_target

    def test_ids_are_unique(self, mock_gw):
        ids = {mock_gw.initiate(500, "x").external_txn_id for _ in range(20)}
        assert len(ids) == 20

    def test_simulate_failure_embeds_marker(self, mock_gw):
        init = mock_gw.initiate(500, "featured:7d", {"simulate_failure": True})
        assert init.external_txn_id.startswith(FAILURE_MARKER)
        assert is_failure_marked(init.external_txn_id)

    def test_unpaid_checkout_is_pending(self, mock_gw):
        init = mock_gw.initiate(1234, "urgent:3d")
        result = mock_gw.verify(init.external_txn_id)
        assert result.verified is False
        assert result.status == GatewayStatus.PENDING
        assert mock_gw.status(init.external_txn_id) == GatewayStatus.PENDING

    def test_completed_checkout_echoes_amount(self, mock_gw):
        init = mock_gw.initiate(1234, "urgent:3d")
        assert mock_gw.complete(init.external_txn_id) is True
        result = mock_gw.verify(init.external_txn_id)
        assert result.verified is True
        assert result.status == GatewayStatus.COMPLETED
        assert result.amount_minor == 1234

    def test_cancelled_checkout_fails(self, mock_gw):
        init = mock_gw.initiate(1234, "urgent:3d")
        mock_gw.cancel(init.external_txn_id)
        result = mock_gw.verify(init.external_txn_id)
        assert result.verified is False
        assert result.status == GatewayStatus.FAILED
        assert mock_gw.status(init.external_txn_id) == GatewayStatus.FAILED

    def test_never_issued_id_is_not_verified(self, mock_gw):
        assert mock_gw.complete("MOCK_1_abc") is False
        result = mock_gw.verify("MOCK_1_abc")
        assert result.verified is False
        assert result.status == GatewayStatus.PENDING
        assert result.amount_minor is None
        assert mock_gw.status("MOCK_1_abc") == GatewayStatus.PENDING

    def test_failure_marker_always_fails(self, mock_gw):
        result = mock_gw.verify("FAIL_MOCK_1_abc")
        assert result.verified is False
        assert result.status == GatewayStatus.FAILED
        assert mock_gw.status("FAIL_MOCK_1_abc") == GatewayStatus.FAILED

    def test_failure_marked_checkout_cannot_complete(self, mock_gw):
        init = mock_gw.initiate(500, "featured:7d", {"simulate_failure": True})
        assert mock_gw.complete(init.external_txn_id) is False
        assert mock_gw.verify(init.external_txn_id).status == GatewayStatus.FAILED

    def test_failure_waits_configured_delay(self):
        gw = MockGateway({"delay_seconds": 1.5})
        with patch("settlement.services.payments.gateway.mock.time.sleep") as sleep:
            gw.verify("FAIL_MOCK_1_abc")
        sleep.assert_called_once_with(1.5)


class TestRedisCheckoutStore:
    def test_record_sets_pending_with_ttl(self):
        client = MagicMock()
        store = RedisCheckoutStore(client=client, ttl_seconds=600)
        store.record("MOCK_1", 500)
        client.hset.assert_called_once_with("mock_checkout:MOCK_1", mapping={"status": "pending", "amount": "500"})
        client.expire.assert_called_once_with("mock_checkout:MOCK_1", 600)

    def test_get_decodes_hash(self):
        client = MagicMock()
        client.hgetall.return_value = {"status": "completed", "amount": "500"}
        assert RedisCheckoutStore(client=client).get("MOCK_1") == ("completed", 500)
        client.hgetall.return_value = {}
        assert RedisCheckoutStore(client=client).get("MOCK_2") is None

    def test_set_status_ignores_unknown_ids(self):
        client = MagicMock()
        client.exists.return_value = 0
        assert RedisCheckoutStore(client=client).set_status("MOCK_1", GatewayStatus.COMPLETED) is False
        client.hset.assert_not_called()

    def test_gateways_sharing_a_store_see_the_same_checkout(self):
        client = MagicMock()
        client.hgetall.return_value = {"status": "completed", "amount": "700"}
        worker = MockGateway({"store": RedisCheckoutStore(client=client)})
        result = worker.verify("MOCK_1")
        assert result.verified is True
        assert result.amount_minor == 700


class TestFactory:
    def test_create_mock(self):
        gw = PaymentGatewayFactory.create("MOCK", {"delay_seconds": 0})
        assert isinstance(gw, MockGateway)

    def test_unknown_gateway(self):
        with pytest.raises(ValueError, match="Unknown payment gateway"):
            PaymentGatewayFactory.create("esewa", {})

    def test_create_from_settings(self):
        gw = PaymentGatewayFactory.create_from_settings()
        assert gw.name == "mock"
        assert gw.delay_seconds == 0
        assert isinstance(gw.store, MemoryCheckoutStore)
