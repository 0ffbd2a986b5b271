# tests/conftest.py
"""
Pytest configuration and fixtures shared by the service and API tests.

Environment variables are set before anything from ``customtees`` is
imported because ``Config`` resolves them once at import time.
"""

import os
import tempfile
from itertools import count

_TEST_DIR = tempfile.mkdtemp(prefix="customtees-tests-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'api.db')}"
os.environ["FLASK_TESTING"] = "true"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["PAYMENT_METHODS"] = "cod,razorpay,square"
os.environ["SQUARE_ACCESS_TOKEN"] = "sq-test-token"
os.environ["SQUARE_LOCATION_ID"] = "sq-test-location"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["SHIPPING_ENABLED"] = "false"
os.environ["COUPON_USAGE_TRACKING_ENABLED"] = "false"
os.environ["STORE_CURRENCY"] = "USD"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from customtees.database import Base
from customtees.errors import GatewayError, NotFoundError
from customtees.gateways.base import GatewayPayment
from customtees.gateways.ups import ShipmentLabel
from customtees.models import Coupon, DiscountType, Product, User
from customtees.observability.metrics import reset_metrics

_sequence = count(1)


@pytest.fixture
def db_session():
    """A fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield


@pytest.fixture
def make_user(db_session):
    def _make(role="customer", username=None):
        n = next(_sequence)
        user = User(
            username=username or f"testuser_{n}",
            email=f"test_{n}@example.com",
            passwordHash="hashed_password",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def sample_user(make_user):
    return make_user()


@pytest.fixture
def make_product(db_session):
    def _make(price=2499, sizes=("S", "M", "L"), colors=("White", "Black"), customizable=True, **kwargs):
        n = next(_sequence)
        product = Product(
            name=kwargs.pop("name", f"Classic Tee {n}"),
            slug=kwargs.pop("slug", f"classic-tee-{n}"),
            price=price,
            sizes=list(sizes),
            variants=[{"color": color, "colorCode": "#ffffff", "images": []} for color in colors],
            stock=kwargs.pop("stock", 100),
            customizable=customizable,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def sample_product(make_product):
    return make_product()


@pytest.fixture
def make_coupon(db_session):
    def _make(code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_value=20, **kwargs):
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase=kwargs.pop("min_purchase", 0),
            used_count=kwargs.pop("used_count", 0),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make


@pytest.fixture
def shipping_address():
    return {
        "fullName": "Ada Lovelace",
        "phone": "+1 555 0100",
        "line1": "12 Analytical Way",
        "line2": "Suite 3",
        "city": "Springfield",
        "state": "IL",
        "postalCode": "62701",
        "country": "US",
    }


def _design_with_layer(width=200, height=120, **layer):
    return {
        "designLayers": [
            {"id": "base", "type": "image", "isBase": True, "width": 600, "height": 700},
            {"id": "text-1", "type": "text", "left": 50, "top": 80, "width": width, "height": height, **layer},
        ],
        "previewImage": "https://img.example.com/preview.png",
        "designData": {"version": 1},
    }


@pytest.fixture
def make_design():
    """A design side holding one printable element plus the garment base layer."""
    return _design_with_layer


class StubPaymentGateway:
    """In-memory stand-in for a provider client."""

    def __init__(self, provider):
        self.provider = provider
        self.payments = {}
        self.calls = []
        self.fail_with = None
        self.created = []

    def add_payment(self, payment_id, status, amount, currency="USD", order_reference=None, failure_detail=None):
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            status=status,
            amount=amount,
            currency=currency,
            order_reference=order_reference,
            failure_detail=failure_detail,
        )

    def retrieve_payment(self, payment_id):
        self.calls.append(payment_id)
        if self.fail_with is not None:
            raise self.fail_with
        if payment_id not in self.payments:
            raise NotFoundError(f"{self.provider} payment not found")
        return self.payments[payment_id]

    def create_payment_link(self, order, redirect_url=None, buyer_email=None):
        self.created.append(order.orderID)
        return {
            "checkoutId": f"link-{order.orderID}",
            "checkoutUrl": f"https://square.example.com/pay/{order.orderID}",
            "providerOrderId": f"sq-order-{order.orderID}",
        }

    def create_order(self, order):
        self.created.append(order.orderID)
        return {"providerOrderId": f"order_rzp_{order.orderID}", "keyId": "rzp_test_key", "amount": order.total, "currency": order.currency}

    def verify_signature(self, provider_order_id, payment_id, signature):
        return signature == "valid-signature"


class StubCarrier:
    def __init__(self):
        self.calls = []
        self.fail_with = None

    def create_shipment(self, order, package):
        self.calls.append((order.orderID, dict(package)))
        if self.fail_with is not None:
            raise self.fail_with
        n = len(self.calls)
        return ShipmentLabel(
            tracking_number=f"1Z999AA1000000{n:04d}",
            label_url=f"https://res.example.com/labels/{order.orderID}-{n}.gif",
            label_public_id=f"customtees/labels/{order.orderID}-{n}",
        )


class StubImageStore:
    def __init__(self):
        self.destroyed = []

    def upload(self, file, folder=None):
        return {"url": "https://res.example.com/upload.gif", "id": "upload-1"}

    def destroy(self, public_id):
        self.destroyed.append(public_id)


@pytest.fixture
def square_gateway():
    return StubPaymentGateway("square")


@pytest.fixture
def razorpay_gateway():
    return StubPaymentGateway("razorpay")


@pytest.fixture
def carrier():
    return StubCarrier()


@pytest.fixture
def image_store():
    return StubImageStore()


@pytest.fixture
def gateway_error():
    return GatewayError("square", "square is unreachable")
