"""
Shared fixtures: in-memory SQLite with one shared connection, gateway and
rate limiter replaced by in-process fakes.
"""
import os

# Settings are read at import time; required values must exist first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("CB_STORAGE", "memory")
os.environ.setdefault("MOCK_GATEWAY_STORAGE", "memory")
os.environ.setdefault("MOCK_GATEWAY_DELAY_SECONDS", "0")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from datetime import datetime, timezone  # noqa: E402

import pybreaker  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from settlement.db.base import Base  # noqa: E402
from settlement.models import ad, audit_log, entitlement, payment_transaction, pricing_tier, user  # noqa: E402,F401
from settlement.models.ad import Ad  # noqa: E402
from settlement.models.pricing_tier import PricingTier  # noqa: E402
from settlement.models.user import User  # noqa: E402
from settlement.services.payments.gateway import MockGateway  # noqa: E402
from settlement.services.payments.service import SettlementService  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT (begin_nested).
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class FakeRateLimiter:
    def __init__(self, allowed: bool = True):
        self.allowed = allowed
        self.calls: list[str] = []

    def allow(self, owner_id: str) -> bool:
        self.calls.append(owner_id)
        return self.allowed


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def open_session(db_session):
    """Extra sessions on the same database, as a second worker would hold. Closed at teardown."""
    sessions = []

    def _open():
        # expire_on_commit=False keeps loaded rows stale in the identity map, like a
        # worker that read them before another worker committed
        session = TestingSessionLocal(expire_on_commit=False)
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def gateway():
    return MockGateway({"delay_seconds": 0, "base_url": "http://testserver"})


@pytest.fixture
def rate_limiter():
    return FakeRateLimiter()


@pytest.fixture
def breaker():
    return pybreaker.CircuitBreaker(fail_max=5, reset_timeout=30)


@pytest.fixture
def settlement_service(db_session, gateway, rate_limiter, breaker):
    return SettlementService(db_session, gateway, rate_limiter=rate_limiter, breaker=breaker)


@pytest.fixture
def make_tier(db_session):
    def _make(entitlement_type="featured", duration_days=7, account_tier="individual", price_minor=500,
              discount_percent=0, active=True):
        row = PricingTier(
            entitlement_type=entitlement_type,
            duration_days=duration_days,
            account_tier=account_tier,
            price_minor=price_minor,
            discount_percent=discount_percent,
            active=active,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture
def make_ad(db_session):
    def _make(user_id="u1", status="active", ad_id=None):
        row = Ad(user_id=user_id, title="Bicycle", status=status)
        if ad_id:
            row.id = ad_id
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture
def make_user(db_session):
    def _make(user_id="u1", account_type="individual", business_verification_status="none"):
        row = User(id=user_id, account_type=account_type, business_verification_status=business_verification_status)
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture
def client(db_session, gateway, rate_limiter):
    from fastapi.testclient import TestClient

    from settlement.api.deps import get_rate_limiter
    from settlement.db.session import get_db
    from settlement.main import app
    from settlement.services.payments.gateway import get_gateway

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
