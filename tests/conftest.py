import os

# Point the module-level engine at SQLite before anything imports advisory
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from advisory.core.config import Settings
from advisory.db.base import Base
from advisory.db.session import get_db
from advisory.dependencies.auth import FixtureAuthProvider
from advisory.main import create_app
from advisory.models.subscription import KycStatus, Subscription, SubscriptionStatus
from advisory.services.digio_client import DigioClient
from advisory.services.razorpay_client import RazorpayClient
from advisory.utils.dates import utcnow

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "digio_webhook_secret"
USER_ID = "user_1"


class FakeVendor:
    """
    Stand-in for a vendor HTTP API behind httpx.MockTransport.
    Register responses with on(); every request is recorded in `requests`.
    """

    def __init__(self):
        self.requests = []
        self._routes = {}

    def on(self, method, path, json=None, status_code=200, raises=None):
        self._routes[(method.upper(), path)] = (json, status_code, raises)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self._routes:
            return httpx.Response(404, json={"error": {"description": f"no route for {key}"}})
        body, status_code, raises = self._routes[key]
        if raises is not None:
            raise raises
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        EXPOSE_ERROR_DETAILS=False,
        DATABASE_URL="sqlite://",
        RAZORPAY_KEY_ID=RAZORPAY_KEY_ID,
        RAZORPAY_KEY_SECRET=RAZORPAY_KEY_SECRET,
        RAZORPAY_API_BASE="https://api.razorpay.test/v1",
        DIGIO_CLIENT_ID="digio_client",
        DIGIO_CLIENT_SECRET="digio_secret",
        DIGIO_BASE_URL="https://digio.test",
        DIGIO_WEBHOOK_SECRET=WEBHOOK_SECRET,
        FRONTEND_URL="https://app.example.com",
        AUTH_PROVIDER="fixture",
        FIXTURE_USER_ID=USER_ID,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def razorpay_api():
    return FakeVendor()


@pytest.fixture
def digio_api():
    return FakeVendor()


@pytest.fixture
def app(settings, db, razorpay_api, digio_api):
    app = create_app(
        settings,
        razorpay=RazorpayClient.from_settings(settings, transport=razorpay_api.transport),
        digio=DigioClient.from_settings(settings, transport=digio_api.transport),
        auth_provider=FixtureAuthProvider(uid=USER_ID, email="user1@example.com"),
    )

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    # Not used as a context manager: skips startup migrations against the real DB
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_subscription(db):
    def _make(**overrides):
        now = utcnow()
        values = {
            "user_id": USER_ID,
            "plan_id": "equity-investing",
            "plan_name": "Equity Investing",
            "billing_period": "monthly",
            "status": SubscriptionStatus.ACTIVE,
            "start_date": now - timedelta(days=5),
            "end_date": now + timedelta(days=25),
            "payment_id": f"pay_{os.urandom(6).hex()}",
            "order_id": f"order_{os.urandom(6).hex()}",
            "amount": Decimal("2499.00"),
            "currency": "INR",
            "kyc_status": KycStatus.PENDING,
        }
        values.update(overrides)
        subscription = Subscription(**values)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def snapshot(db):
    """Every column of every subscription row, for before/after comparisons."""
    def _snapshot():
        db.expire_all()
        rows = db.query(Subscription).order_by(Subscription.id).all()
        columns = [c.name for c in Subscription.__table__.columns]
        return [{name: getattr(row, name) for name in columns} for row in rows]

    return _snapshot
