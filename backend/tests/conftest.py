"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import secrets
import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import fakeredis
import pytest
import stripe as stripe_sdk
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_MAIN_ACCOUNT_WEBHOOK_SECRET"] = "whsec_test_main_account"
os.environ["STRIPE_CONNECTED_ACCOUNT_WEBHOOK_SECRET"] = "whsec_test_connected_account"
os.environ["ENABLE_BACKGROUND_TASKS"] = "false"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""
os.environ["RESEND_API_KEY"] = ""

from eventhub.main import app
from eventhub.core.config import settings
from eventhub.db.session import get_db
from eventhub.db import redis as redis_module
from eventhub.models import Base
from eventhub.models.enums import StripeAccountStatus
from eventhub.models.event import Event
from eventhub.models.platform_stripe_price import PlatformStripePrice
from eventhub.models.platform_stripe_product import PlatformStripeProduct
from eventhub.models.stripe_price import StripePrice
from eventhub.models.stripe_product import StripeProduct
from eventhub.models.user import User


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

MAIN_WEBHOOK_PATH = "/api/stripe/webhook/main-account"
CONNECTED_WEBHOOK_PATH = "/api/stripe/webhook/connected-account"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Session store backed by fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, 'redis_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # init_db would otherwise touch the application engine
        with patch('eventhub.main.init_db'):
            with patch('eventhub.main.instrument_sqlalchemy'):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def login_as(client: TestClient, mock_redis):
    """Return a function that authenticates the client as the given user"""
    def _login(user: User) -> TestClient:
        session_id = secrets.token_urlsafe(16)
        mock_redis.setex(f"session:{session_id}", redis_module.SESSION_TTL, user.id)
        client.cookies.set("session_id", session_id)
        return client
    return _login


def _make_user(db_session: Session, email: str, name: str, **fields) -> User:
    user = User(email=email, name=name, **fields)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def host_user(db_session: Session) -> User:
    """Event host / plan owner with an active connect account"""
    return _make_user(
        db_session,
        "delivered+host@resend.dev",
        "Host",
        stripe_account_id="acct_host123",
        stripe_account_status=StripeAccountStatus.ACTIVE.value,
    )


@pytest.fixture(scope="function")
def buyer_user(db_session: Session) -> User:
    return _make_user(db_session, "delivered+buyer@resend.dev", "Buyer")


@pytest.fixture(scope="function")
def paid_event(db_session: Session, host_user: User) -> Event:
    event = Event(title="Launch Party", created_by=host_user.id, is_paid_event=True)
    db_session.add(event)
    db_session.commit()
    db_session.refresh(event)
    return event


@pytest.fixture(scope="function")
def creator_plan(db_session: Session, host_user: User):
    """A creator product with one monthly price"""
    product = StripeProduct(
        stripe_product_id="prod_creator123",
        user_id=host_user.id,
        stripe_account_id=host_user.stripe_account_id,
        name="Backstage Pass",
    )
    db_session.add(product)
    db_session.flush()
    price = StripePrice(
        product_id=product.id,
        stripe_price_id="price_creator123",
        amount=Decimal("10.00"),
        currency="usd",
        interval="month",
    )
    db_session.add(price)
    db_session.commit()
    db_session.refresh(product)
    db_session.refresh(price)
    return product, price


@pytest.fixture(scope="function")
def platform_plan(db_session: Session):
    """A platform product with one monthly price"""
    product = PlatformStripeProduct(stripe_product_id="prod_platform123", name="Organizer Pro")
    db_session.add(product)
    db_session.flush()
    price = PlatformStripePrice(
        platform_stripe_product_id=product.id,
        stripe_price_id="price_platform123",
        amount=Decimal("29.00"),
        currency="usd",
        interval="month",
    )
    db_session.add(price)
    db_session.commit()
    db_session.refresh(product)
    db_session.refresh(price)
    return product, price


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock the Stripe SDK used by the gateway client"""
    with patch('eventhub.services.stripe_service.stripe') as mock_stripe_module:
        # Real classes so isinstance checks and except clauses keep working
        mock_stripe_module.StripeObject = stripe_sdk.StripeObject
        mock_stripe_module.StripeError = stripe_sdk.StripeError

        mock_stripe_module.Customer.list = Mock(return_value={"data": []})
        mock_stripe_module.Customer.create = Mock(return_value={"id": "cus_test123", "email": "delivered@resend.dev"})

        mock_stripe_module.PaymentIntent.create = Mock(return_value={
            "id": "pi_test123",
            "client_secret": "pi_test123_secret",
            "amount": 5000,
            "status": "requires_payment_method",
        })
        mock_stripe_module.PaymentIntent.retrieve = Mock(return_value={
            "id": "pi_test123",
            "payment_method_types": ["card"],
        })

        mock_stripe_module.Subscription.modify = Mock(return_value={"id": "sub_test123", "cancel_at_period_end": True})

        yield mock_stripe_module


@pytest.fixture(scope="function")
def mock_email_service():
    """Mock email service (Resend) to avoid sending actual emails"""
    with patch('eventhub.services.email_service.resend') as mock_resend:
        with patch.object(settings, 'RESEND_API_KEY', 're_test_123'):
            mock_resend.Emails.send = Mock(return_value={"id": "email_test123"})
            yield mock_resend


def sign_payload(payload: str, secret: str, timestamp: int = None) -> str:
    """Build a stripe-signature header the way Stripe does"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = None) -> dict:
    return {
        "id": event_id or f"evt_{secrets.token_hex(8)}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture(scope="function")
def post_webhook(client: TestClient):
    """Return a function that signs and delivers an event to a webhook endpoint"""
    def _post(event: dict, path: str = MAIN_WEBHOOK_PATH, secret: str = None):
        if secret is None:
            secret = (
                settings.STRIPE_CONNECTED_ACCOUNT_WEBHOOK_SECRET
                if path == CONNECTED_WEBHOOK_PATH
                else settings.STRIPE_MAIN_ACCOUNT_WEBHOOK_SECRET
            )
        payload = json.dumps(event)
        return client.post(
            path,
            content=payload,
            headers={"stripe-signature": sign_payload(payload, secret), "content-type": "application/json"},
        )
    return _post


# Resend test email addresses - use these in ALL tests to avoid fake addresses
# See: https://resend.com/docs/dashboard/emails/send-test-emails
RESEND_TEST_DELIVERED = "delivered@resend.dev"
