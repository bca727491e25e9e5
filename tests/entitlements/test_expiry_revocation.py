"""Tests for lazy expiry, administrative revocation and the stale-flag sweep."""
from datetime import timedelta

import pytest

from settlement.core.errors import NotFoundError, ValidationError
from settlement.models.audit_log import AuditLog
from settlement.models.entitlement import Entitlement
from settlement.models.user import User
from settlement.services.entitlements.evaluator import is_grant_active
from settlement.services.entitlements.service import EntitlementService


@pytest.fixture
def add_grant(db_session):
    def _add(entity_type="ad", entity_id="ad1", entitlement_type="featured", is_active=True, expires_at=None):
        row = Entitlement(
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id="u1",
            entitlement_type=entitlement_type,
            is_active=is_active,
            expires_at=expires_at,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _add


class TestEvaluator:
    def test_flag_off_is_inactive(self, now):
        assert is_grant_active(False, now + timedelta(days=1), now) is False

    def test_future_expiry_is_active(self, now):
        assert is_grant_active(True, now + timedelta(seconds=1), now) is True

    def test_past_expiry_with_flag_still_set(self, now):
        assert is_grant_active(True, now - timedelta(seconds=1), now) is False

    def test_expiry_equal_to_now_is_inactive(self, now):
        assert is_grant_active(True, now, now) is False

    def test_null_expiry_is_indefinite(self, now):
        assert is_grant_active(True, None, now) is True

    def test_naive_expiry_treated_as_utc(self, now):
        assert is_grant_active(True, (now + timedelta(hours=1)).replace(tzinfo=None), now) is True


class TestReads:
    def test_expired_grant_reads_inactive_without_sweep(self, db_session, add_grant, now):
        add_grant(expires_at=now - timedelta(minutes=1))
        svc = EntitlementService(db_session)
        assert svc.is_active("ad", "ad1", "featured", now) is False
        assert svc.get("ad", "ad1", "featured").is_active is True

    def test_missing_grant_is_inactive(self, db_session, now):
        assert EntitlementService(db_session).is_active("ad", "nope", "urgent", now) is False

    def test_user_badges(self, db_session, add_grant, now):
        add_grant("user", "u1", "individual_verification", expires_at=now + timedelta(days=5))
        badges = EntitlementService(db_session).active_entitlements("user", "u1", now)
        assert badges == {"business_verification": False, "individual_verification": True}

    def test_unknown_entity_type(self, db_session):
        with pytest.raises(ValidationError):
            EntitlementService(db_session).active_entitlements("shop", "s1")


class TestRevoke:
    def test_revoke_flips_next_read(self, db_session, add_grant, now):
        add_grant(expires_at=now + timedelta(days=5))
        svc = EntitlementService(db_session)
        assert svc.is_active("ad", "ad1", "featured", now) is True

        grant = svc.revoke("ad", "ad1", "featured", "misleading listing", "admin1", now)

        assert svc.is_active("ad", "ad1", "featured", now) is False
        assert grant.expires_at is None
        assert grant.revoked_by == "admin1"
        assert grant.revoke_reason == "misleading listing"
        audit = db_session.query(AuditLog).filter(AuditLog.action == "entitlement_revoked").one()
        assert audit.actor_id == "admin1"
        assert audit.payload["reason"] == "misleading listing"

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_reason_required(self, db_session, add_grant, reason):
        add_grant()
        with pytest.raises(ValidationError):
            EntitlementService(db_session).revoke("ad", "ad1", "featured", reason, "admin1")

    def test_unknown_grant(self, db_session):
        with pytest.raises(NotFoundError):
            EntitlementService(db_session).revoke("ad", "ad1", "featured", "spam", "admin1")

    def test_type_must_match_entity(self, db_session):
        with pytest.raises(ValidationError):
            EntitlementService(db_session).revoke("user", "u1", "featured", "spam", "admin1")

    def test_business_revoke_downgrades_user(self, db_session, make_user, add_grant, now):
        make_user("u1", account_type="business", business_verification_status="approved")
        add_grant("user", "u1", "business_verification", expires_at=now + timedelta(days=300))

        EntitlementService(db_session).revoke("user", "u1", "business_verification", "forged documents", "admin1", now)

        user = db_session.query(User).filter(User.id == "u1").one()
        assert user.business_verification_status == "revoked"
        assert user.account_type == "individual"


class TestSweep:
    def test_clear_stale_flags(self, db_session, add_grant, now):
        add_grant(entity_id="ad1", expires_at=now - timedelta(days=1))
        add_grant(entity_id="ad2", expires_at=now + timedelta(days=1))
        add_grant(entity_id="ad3", expires_at=None)

        cleared = EntitlementService(db_session).clear_stale_flags(now)

        assert cleared == 1
        flags = {g.entity_id: g.is_active for g in db_session.query(Entitlement).all()}
        assert flags == {"ad1": False, "ad2": True, "ad3": True}
