"""
Pytest configuration and fixtures for testing
"""
import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from signflow import config
from signflow.auth import issue_token
from signflow.errors import SubscriptionNotFound, UpstreamProviderError
from signflow.main import create_app
from signflow.models import Base, Customer, User, utcnow
from signflow.payments import snapshot_from_payload

WEBHOOK_SECRET = "whsec_test_secret"
DAY = 24 * 60 * 60


class FakePayments:
    """Stands in for PaymentsClient; holds provider-side subscription objects."""

    def __init__(self):
        self.subscriptions = {}
        self.customer_emails = {}
        self.cancel_calls = []
        self.checkout_calls = []
        self.fail_lookups = False

    def add_subscription(self, payload):
        self.subscriptions[payload["id"]] = payload
        return payload

    def get_subscription(self, subscription_id):
        if self.fail_lookups:
            raise UpstreamProviderError("provider unavailable")
        if subscription_id not in self.subscriptions:
            raise SubscriptionNotFound(subscription_id)
        return snapshot_from_payload(self.subscriptions[subscription_id])

    def cancel_subscription(self, subscription_id, effective_from):
        self.cancel_calls.append((subscription_id, effective_from))
        payload = dict(self.subscriptions[subscription_id])
        if effective_from == "immediately":
            payload["status"] = "canceled"
        else:
            payload["cancel_at_period_end"] = True
        self.subscriptions[subscription_id] = payload
        return snapshot_from_payload(payload)

    def get_customer_email(self, customer_id):
        if self.fail_lookups:
            raise UpstreamProviderError("provider unavailable")
        return self.customer_emails.get(customer_id, "")

    def create_checkout_session(self, **kwargs):
        self.checkout_calls.append(kwargs)
        return "https://checkout.stripe.test/c/pay/cs_test_123"


def subscription_payload(sub_id, customer_id, price_id="price_pro_month", status="active", **extra):
    now = int(time.time())
    payload = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "start_date": now - DAY,
        "created": now - DAY,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "pause_collection": None,
        "items": {
            "object": "list",
            "data": [{
                "id": "si_" + sub_id,
                "current_period_end": now + 30 * DAY,
                "price": {"id": price_id, "recurring": {"interval": "month", "interval_count": 1}},
            }],
        },
    }
    payload.update(extra)
    return payload

def event_body(event_id, event_type, obj, created=None):
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(created if created is not None else time.time()),
        "data": {"object": obj},
    })

def sign(body, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = int(timestamp or time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def payments():
    return FakePayments()

@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET

@pytest.fixture
def client(session_factory, payments, webhook_secret):
    app = create_app(session_factory=session_factory, payments=payments)
    with TestClient(app) as test_client:
        yield test_client

@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", provider="email", consent_version=None):
        user = User(email=email.lower(), auth_provider=provider, password_hash=None)
        if consent_version is not None:
            now = utcnow()
            user.terms_accepted_at = now
            user.privacy_accepted_at = now
            user.terms_accepted_version = consent_version
            user.privacy_accepted_version = consent_version
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make

@pytest.fixture
def make_customer(db):
    def _make(customer_id, user):
        customer = Customer(customer_id=customer_id, email=user.email, user_id=user.id)
        db.add(customer)
        db.commit()
        return customer
    return _make

def auth_headers(user):
    return {"Authorization": f"Bearer {issue_token(user)}"}
