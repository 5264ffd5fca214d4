"""
Pytest configuration and fixtures for the billing backend tests.
"""

import json
import os

# Set test environment variables before importing the app
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_TOKEN"] = "test-api-token"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_MONTHLY_PRICE_ID"] = "price_monthly"
os.environ["STRIPE_YEARLY_PRICE_ID"] = "price_yearly"
os.environ["ENABLE_EMAIL_NOTIFICATIONS"] = "false"

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pdfapp.api.deps import get_billing_gateway
from pdfapp.billing.stripe_gateway import WebhookVerificationError
from pdfapp.core.config import BillingConfig, settings
from pdfapp.db.base import Base
from pdfapp.db.models.notification_outbox import NotificationOutbox
from pdfapp.db.models.user import User
from pdfapp.db.session import get_db
from pdfapp.main import app

VALID_SIGNATURE = "t=1,v1=valid"

# 2030-01-01T00:00:00Z
FUTURE_PERIOD_END = 1893456000


class FakeGateway:
    """In-memory stand-in for StripeGateway returning plain dicts."""

    def __init__(self, config: BillingConfig):
        self.config = config
        self.customers = {}
        self.subscriptions = {}
        self.calls = []
        self.error = None

    def _call(self, name, *args):
        self.calls.append((name, *args))
        if self.error is not None:
            raise self.error

    def construct_event(self, payload, sig_header):
        if sig_header != VALID_SIGNATURE:
            raise WebhookVerificationError("Invalid signature")
        return json.loads(payload)

    def retrieve_customer(self, customer_id):
        self._call("retrieve_customer", customer_id)
        try:
            return self.customers[customer_id]
        except KeyError:
            raise stripe.InvalidRequestError(f"No such customer: {customer_id}", "id") from None

    def create_customer(self, email, name=None):
        self._call("create_customer", email)
        customer = make_customer(f"cus_new_{len(self.customers) + 1}", email, name)
        self.customers[customer["id"]] = customer
        return customer

    def retrieve_subscription(self, subscription_id):
        self._call("retrieve_subscription", subscription_id)
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise stripe.InvalidRequestError(f"No such subscription: {subscription_id}", "id") from None

    def set_cancel_at_period_end(self, subscription_id, cancel):
        self._call("set_cancel_at_period_end", subscription_id, cancel)
        subscription = self.subscriptions[subscription_id]
        subscription["cancel_at_period_end"] = cancel
        return subscription

    def swap_price(self, subscription, price_id):
        self._call("swap_price", subscription["id"], price_id)
        interval = "year" if price_id == self.config.yearly_price_id else "month"
        subscription["items"]["data"][0]["price"] = {
            "id": price_id,
            "lookup_key": None,
            "recurring": {"interval": interval},
        }
        return subscription

    def create_checkout_session(self, customer_id, price_id, *, user_id, plan):
        self._call("create_checkout_session", customer_id, price_id)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}


def make_customer(customer_id="cus_1", email="a@x.com", name=None):
    return {"id": customer_id, "object": "customer", "email": email, "name": name}


def make_subscription(
    subscription_id="sub_1",
    customer_id="cus_1",
    status="active",
    interval="month",
    lookup_key=None,
    current_period_end=FUTURE_PERIOD_END,
    cancel_at_period_end=False,
):
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "current_period_end": current_period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {
            "object": "list",
            "data": [
                {
                    "id": f"si_{subscription_id}",
                    "quantity": 1,
                    "price": {
                        "id": f"price_{interval}",
                        "lookup_key": lookup_key,
                        "recurring": {"interval": interval},
                    },
                }
            ],
        },
    }


def make_event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway(settings.billing_config())


@pytest.fixture
def make_user(db):
    def _make_user(email="a@x.com", **fields):
        user = User(email=email, **fields)
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def outbox(db):
    def _rows(kind=None, to_email=None):
        stmt = select(NotificationOutbox)
        if kind:
            stmt = stmt.where(NotificationOutbox.kind == kind)
        if to_email:
            stmt = stmt.where(NotificationOutbox.to_email == to_email)
        return list(db.execute(stmt).scalars().all())

    return _rows


@pytest.fixture
def client(db, gateway):
    """Create a test client with the database and Stripe gateway overridden."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(email="a@x.com"):
        return {"Authorization": "Bearer test-api-token", "X-User-Email": email}

    return _headers
