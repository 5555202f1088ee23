"""Pytest fixtures for checkout service tests."""

import os

# Must be set before the app modules read their configuration.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from checkout_service.app.database import Base, SessionLocal, engine  # noqa: E402
from checkout_service.app.discounts import compute_discounts  # noqa: E402
from checkout_service.app.errors import NotificationFailed  # noqa: E402
from checkout_service.app.main import app, get_authorizer, get_clock, get_notifier  # noqa: E402
from checkout_service.app.models import Product  # noqa: E402
from checkout_service.app.payments import PaymentAuthorizer, always_approve  # noqa: E402
from checkout_service.app.pricing import calculate  # noqa: E402
from checkout_service.app.schemas import CartItem, DraftOrder  # noqa: E402

STORE_TZ = ZoneInfo("Asia/Kolkata")
# 2026-10-20 is a Tuesday.
TUESDAY_9AM = datetime(2026, 10, 20, 9, 0, tzinfo=STORE_TZ)
TUESDAY_NOON = datetime(2026, 10, 20, 12, 0, tzinfo=STORE_TZ)
ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}

VALID_CARD = {
    "cardNumber": "4242 4242 4242 4242",
    "expiryDate": "12/30",
    "cvv": "123",
    "cardholderName": "Asha Rao",
}
VALID_UPI = {"upiId": "asha.rao@okbank", "upiName": "Asha Rao"}


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def dispatch(self, payload):
        if self.fail:
            raise NotificationFailed()
        self.sent.append(payload)


def user_headers(user_id="user-1"):
    return {"X-User-Id": user_id}


def latte(quantity=1, price="200"):
    return CartItem(product_id="p-latte", name="Latte", price=Decimal(price), quantity=quantity,
                    category="Coffee")


def muffin(quantity=1, price="120"):
    return CartItem(product_id="p-muffin", name="Blueberry Muffin", price=Decimal(price), quantity=quantity,
                    category="Bakery")


@pytest.fixture
def db_session():
    """Fresh schema on the shared in-memory database."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def products(db_session):
    """Two catalog rows carrying seed ratings."""
    rows = [
        Product(id="p-latte", name="Latte", category="Coffee", price=Decimal("200"),
                average_rating=Decimal("4.5"), review_count=10),
        Product(id="p-muffin", name="Blueberry Muffin", category="Bakery", price=Decimal("120"),
                average_rating=Decimal("4.0"), review_count=5),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture
def clock():
    return FakeClock(TUESDAY_NOON)


@pytest.fixture
def authorizer():
    return PaymentAuthorizer(decide=always_approve, latency=0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db_session, products, clock, authorizer, notifier):
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_authorizer] = lambda: authorizer
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_draft(owner_id="user-1", items=None, now=TUESDAY_9AM):
    """A priced draft as POST /orders would build it."""
    items = items or [latte()]
    discounts = compute_discounts(items, now)
    breakdown = calculate(items, discounts)
    return DraftOrder(
        owner_id=owner_id,
        items=items,
        address="Block C, Room 12",
        phone="9876543210",
        discounts=discounts,
        subtotal=breakdown.subtotal,
        discount_total=breakdown.discount_total,
        gst_amount=breakdown.gst,
        total=breakdown.total,
    )
