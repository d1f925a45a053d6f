"""Pytest fixtures for storefront tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from errors import EmailDeliveryError, PaymentGatewayError
from notifications import Mailer
from payments import PaymentGateway, compute_signature

GATEWAY_SECRET = "test_secret"


class FakeGateway(PaymentGateway):
    key_id = "rzp_test_public"
    key_secret = GATEWAY_SECRET

    def __init__(self):
        self.calls = []
        self.fail = False

    def create_order(self, amount, currency, receipt, notes):
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.fail:
            raise PaymentGatewayError("gateway unavailable")
        return {"id": f"order_{len(self.calls)}", "amount": amount, "currency": currency}


class FakeMailer(Mailer):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html, attachments=None):
        if self.fail:
            raise EmailDeliveryError(to, "smtp down")
        self.sent.append({"to": to, "subject": subject, "html": html, "attachments": attachments or []})
        return f"msg-{len(self.sent)}"


def sign(razorpay_order_id, razorpay_payment_id, secret=GATEWAY_SECRET):
    return compute_signature(secret, razorpay_order_id, razorpay_payment_id)


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront_test


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def token_store():
    from token_store import InMemoryTokenStore

    return InMemoryTokenStore()


@pytest.fixture
def client(db, gateway, mailer, token_store):
    from database import get_db
    from main import app, get_token_store
    from notifications import get_mailer
    from payments import get_gateway

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_token_store] = lambda: token_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    def _make(name="Leather Tote", price=1000.0, quantity=10, discount=0.0):
        res = db["product"].insert_one({
            "name": name,
            "image": f"https://img.test/{name}.png",
            "description": "",
            "price": price,
            "discount": discount,
            "quantity": quantity,
            "purchase_count": 0,
            "created_at": datetime.now(timezone.utc),
        })
        return str(res.inserted_id)

    return _make


@pytest.fixture
def make_user(db):
    """Insert a user and return (user_id, auth headers)."""
    from main import create_token, hash_password

    def _make(email="buyer@example.com", name="Buyer", is_admin=False, cart=None):
        res = db["user"].insert_one({
            "name": name,
            "email": email,
            "password_hash": hash_password("secret"),
            "is_admin": is_admin,
            "cart": cart or [],
        })
        user_id = str(res.inserted_id)
        token = create_token({"id": user_id, "email": email, "is_admin": is_admin})
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_order(db):
    def _make(user_id="u1", items=None, payment_status="paid"):
        res = db["order"].insert_one({
            "user_id": user_id,
            "items": items or [],
            "payment_status": payment_status,
            "order_status": "Processing",
            "status_history": [],
            "created_at": datetime.now(timezone.utc),
        })
        return str(res.inserted_id)

    return _make
