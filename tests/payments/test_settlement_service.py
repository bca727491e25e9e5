"""Tests for SettlementService: purchase, callback settlement and reconciliation."""
from datetime import timedelta

import pytest

from settlement.core.errors import GatewayError, NotFoundError, RateLimitError, ValidationError
from settlement.models.entitlement import Entitlement
from settlement.services.payments.gateway import (
    GatewayInitiation,
    GatewayStatus,
    GatewayVerification,
    MockGateway,
    PaymentGateway,
)
from settlement.services.payments.ledger import TransactionLedger
from settlement.services.payments.service import SettlementService
from settlement.utils.time import ensure_utc, utcnow


class StubGateway(PaymentGateway):
    """Gateway with scripted answers; raise_on names operations that fail in transport."""

    name = "stub"

    def __init__(self, status=GatewayStatus.PENDING, verified=False, amount_minor=None, raise_on=()):
        super().__init__({})
        self._status = status
        self._verified = verified
        self._amount = amount_minor
        self.raise_on = set(raise_on)
        self.counter = 0

    def initiate(self, amount_minor, product_ref, metadata=None):
        if "initiate" in self.raise_on:
            raise ConnectionError("gateway down")
        self.counter += 1
        return GatewayInitiation(f"STUB_{self.counter}", "http://stub/checkout")

    def verify(self, external_txn_id):
        if "verify" in self.raise_on:
            raise ConnectionError("gateway down")
        return GatewayVerification(external_txn_id, self._verified, self._status, self._amount)

    def status(self, external_txn_id):
        if "status" in self.raise_on:
            raise TimeoutError("gateway timeout")
        return self._status


@pytest.fixture
def promotable_ad(make_ad, make_tier):
    make_tier("featured", 7, "individual", 500)
    return make_ad(user_id="u1", status="active", ad_id="ad1")


def _featured(db):
    return (
        db.query(Entitlement)
        .filter(Entitlement.entity_id == "ad1", Entitlement.entitlement_type == "featured")
        .one_or_none()
    )


class TestPurchase:
    def test_purchase_creates_pending(self, settlement_service, promotable_ad, rate_limiter):
        result = settlement_service.purchase("u1", "featured", 7, "ad1")
        txn = result.transaction
        assert txn.status == "pending"
        assert txn.amount_minor == 500
        assert txn.account_tier == "individual"
        assert txn.related_entity_id == "ad1"
        assert result.redirect_target.startswith("http://testserver/mock-payment/checkout")
        assert rate_limiter.calls == ["u1"]

    def test_other_owners_ad_is_not_found(self, settlement_service, promotable_ad):
        with pytest.raises(NotFoundError):
            settlement_service.purchase("intruder", "featured", 7, "ad1")

    def test_ad_required_for_boost(self, settlement_service, promotable_ad):
        with pytest.raises(ValidationError):
            settlement_service.purchase("u1", "featured", 7)

    def test_unpromotable_ad(self, settlement_service, make_ad, make_tier):
        make_tier("featured", 7, "individual", 500)
        make_ad(user_id="u1", status="suspended", ad_id="ad2")
        with pytest.raises(ValidationError):
            settlement_service.purchase("u1", "featured", 7, "ad2")

    def test_no_pricing_row(self, settlement_service, promotable_ad):
        with pytest.raises(NotFoundError):
            settlement_service.purchase("u1", "featured", 3, "ad1")
        assert TransactionLedger(settlement_service.db).list_for_owner("u1") == []

    def test_rate_limited(self, settlement_service, promotable_ad, rate_limiter):
        rate_limiter.allowed = False
        with pytest.raises(RateLimitError):
            settlement_service.purchase("u1", "featured", 7, "ad1")

    def test_gateway_down_writes_nothing(self, db_session, promotable_ad, rate_limiter, breaker):
        svc = SettlementService(db_session, StubGateway(raise_on={"initiate"}), rate_limiter=rate_limiter, breaker=breaker)
        with pytest.raises(GatewayError):
            svc.purchase("u1", "featured", 7, "ad1")
        assert TransactionLedger(db_session).list_for_owner("u1") == []

    def test_verification_purchase_targets_owner(self, settlement_service, make_tier):
        make_tier("individual_verification", 30, "individual", 50_000)
        result = settlement_service.purchase("u1", "individual_verification", 30)
        assert result.transaction.related_entity_id is None


class TestCallback:
    def test_successful_purchase_features_ad(self, settlement_service, promotable_ad, now):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.complete(ext)

        txn = settlement_service.handle_callback(ext, "completed", now=now)

        assert txn.status == "verified"
        grant = _featured(settlement_service.db)
        assert grant.is_active is True
        assert ensure_utc(grant.expires_at) == now + timedelta(days=7)

    def test_failure_marker_leaves_ad_untouched(self, settlement_service, promotable_ad, now):
        result = settlement_service.purchase("u1", "featured", 7, "ad1", simulate_failure=True)
        ext = result.transaction.external_txn_id
        assert ext.startswith("FAIL_")

        txn = settlement_service.handle_callback(ext, "completed", now=now)

        assert txn.status == "failed"
        assert txn.failure_reason == "mock_failure_marker"
        assert _featured(settlement_service.db) is None

    def test_duplicate_callback_activates_once(self, settlement_service, promotable_ad, now):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.complete(ext)
        settlement_service.handle_callback(ext, "completed", now=now)

        again = settlement_service.handle_callback(ext, "completed", now=now + timedelta(hours=1))

        assert again.status == "verified"
        assert ensure_utc(_featured(settlement_service.db).expires_at) == now + timedelta(days=7)

    def test_late_failure_after_verified_is_benign(self, settlement_service, promotable_ad, now):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.complete(ext)
        settlement_service.handle_callback(ext, "completed", now=now)

        txn = settlement_service.handle_callback(ext, "failed", now=now)
        assert txn.status == "verified"

    def test_callback_for_unpaid_checkout_stays_pending(self, settlement_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        txn = settlement_service.handle_callback(ext, "completed")

        assert txn.status == "pending"
        assert _featured(settlement_service.db) is None

    def test_cancelled_callback_fails(self, settlement_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        txn = settlement_service.handle_callback(ext, "cancelled")
        assert txn.status == "failed"
        assert txn.failure_reason == "gateway_reported_cancelled"

    def test_amount_mismatch_fails(self, db_session, promotable_ad, rate_limiter, breaker):
        gw = StubGateway(status=GatewayStatus.COMPLETED, verified=True, amount_minor=1)
        svc = SettlementService(db_session, gw, rate_limiter=rate_limiter, breaker=breaker)
        ext = svc.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        txn = svc.handle_callback(ext, "completed")
        assert txn.status == "failed"
        assert txn.failure_reason == "amount_mismatch"
        assert _featured(db_session) is None

    def test_verify_outage_keeps_pending(self, db_session, promotable_ad, rate_limiter, breaker):
        gw = StubGateway(raise_on={"verify"})
        svc = SettlementService(db_session, gw, rate_limiter=rate_limiter, breaker=breaker)
        ext = svc.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        with pytest.raises(GatewayError):
            svc.handle_callback(ext, "completed")
        assert TransactionLedger(db_session).get(ext).status == "pending"

    def test_unknown_transaction(self, settlement_service):
        with pytest.raises(NotFoundError):
            settlement_service.handle_callback("MOCK_unknown", "completed")


class TestReconcile:
    def test_paid_checkout_is_verified_and_activated(self, settlement_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.complete(ext)

        counts = settlement_service.reconcile_pending(utcnow() + timedelta(minutes=20))

        assert counts["checked"] == 1
        assert counts["verified"] == 1
        assert TransactionLedger(settlement_service.db).get(ext).status == "verified"
        assert _featured(settlement_service.db).is_active is True

    def test_failure_marked_is_failed(self, settlement_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1", simulate_failure=True).transaction.external_txn_id
        counts = settlement_service.reconcile_pending(utcnow() + timedelta(minutes=20))
        assert counts["failed"] == 1
        assert TransactionLedger(settlement_service.db).get(ext).status == "failed"

    def test_young_pending_untouched(self, settlement_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        counts = settlement_service.reconcile_pending(utcnow() + timedelta(minutes=1))
        assert counts["checked"] == 0
        assert TransactionLedger(settlement_service.db).get(ext).status == "pending"

    def test_pending_past_timeout_fails(self, db_session, promotable_ad, rate_limiter, breaker):
        svc = SettlementService(db_session, StubGateway(GatewayStatus.PENDING), rate_limiter=rate_limiter, breaker=breaker)
        ext = svc.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        counts = svc.reconcile_pending(utcnow() + timedelta(hours=25))

        assert counts["timed_out"] == 1
        txn = TransactionLedger(db_session).get(ext)
        assert txn.status == "failed"
        assert txn.failure_reason == "pending_timeout"

    def test_pending_within_timeout_stays(self, db_session, promotable_ad, rate_limiter, breaker):
        svc = SettlementService(db_session, StubGateway(GatewayStatus.PENDING), rate_limiter=rate_limiter, breaker=breaker)
        ext = svc.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        counts = svc.reconcile_pending(utcnow() + timedelta(hours=2))

        assert counts["still_pending"] == 1
        assert TransactionLedger(db_session).get(ext).status == "pending"

    def test_gateway_outage_keeps_pending(self, db_session, promotable_ad, rate_limiter, breaker):
        gw = StubGateway(GatewayStatus.PENDING)
        svc = SettlementService(db_session, gw, rate_limiter=rate_limiter, breaker=breaker)
        ext = svc.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        gw.raise_on.add("status")

        counts = svc.reconcile_pending(utcnow() + timedelta(hours=48))

        assert counts["errors"] == 1
        assert TransactionLedger(db_session).get(ext).status == "pending"


class TestReconcileMockCheckout:
    """The reconciler runs in a Celery worker with its own gateway over the shared checkout store."""

    @pytest.fixture
    def worker_service(self, db_session, gateway, rate_limiter, breaker):
        worker_gateway = MockGateway({"delay_seconds": 0, "store": gateway.store})
        return SettlementService(db_session, worker_gateway, rate_limiter=rate_limiter, breaker=breaker)

    def test_abandoned_checkout_times_out_without_grant(self, settlement_service, worker_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        counts = worker_service.reconcile_pending(utcnow() + timedelta(hours=25))

        assert counts["timed_out"] == 1
        assert counts["verified"] == 0
        txn = TransactionLedger(settlement_service.db).get(ext)
        assert txn.status == "failed"
        assert txn.failure_reason == "pending_timeout"
        assert _featured(settlement_service.db) is None

    def test_abandoned_checkout_within_timeout_stays_pending(self, settlement_service, worker_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id

        counts = worker_service.reconcile_pending(utcnow() + timedelta(hours=2))

        assert counts["still_pending"] == 1
        assert TransactionLedger(settlement_service.db).get(ext).status == "pending"

    def test_checkout_paid_through_other_instance_is_verified(self, settlement_service, worker_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.complete(ext)

        counts = worker_service.reconcile_pending(utcnow() + timedelta(minutes=20))

        assert counts["verified"] == 1
        assert _featured(settlement_service.db).is_active is True

    def test_cancelled_checkout_is_failed(self, settlement_service, worker_service, promotable_ad):
        ext = settlement_service.purchase("u1", "featured", 7, "ad1").transaction.external_txn_id
        settlement_service.gateway.cancel(ext)

        counts = worker_service.reconcile_pending(utcnow() + timedelta(minutes=20))

        assert counts["failed"] == 1
        assert TransactionLedger(settlement_service.db).get(ext).status == "failed"
