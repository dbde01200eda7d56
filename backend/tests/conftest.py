"""
Pytest fixtures for orderflow backend tests.

Provides an in-memory database, catalog fixtures, fake payment/carrier
collaborators and the Flask test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from orderflow import create_app
from orderflow.extensions import db
from orderflow.models import Product, Variant, Address, CartItem, Coupon, Partner, CouponPartner
from orderflow.services import payment_gateway, carrier_service
from orderflow.services.payment_gateway import (
    PaymentGateway, DisabledPaymentGateway, RefundResult, ExternalCollaboratorFailure,
)
from orderflow.services.carrier_service import (
    CarrierClient, DisabledCarrierClient, Shipment, CarrierAssignment, CarrierEvent,
)
from orderflow.time_utils import utcnow


USER_ID = 501
OTHER_USER_ID = 502
ADMIN_ID = 9001


class FakePaymentGateway(PaymentGateway):
    name = "fake"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.refunds = []
        self.captures = []

    def capture(self, payment_id, amount):
        self.captures.append((payment_id, amount))

    def refund(self, payment_id, amount, reason=None):
        if self.fail:
            raise RuntimeError("gateway timeout")
        self.refunds.append((payment_id, amount, reason))
        return RefundResult(refund_id=f"rfnd_{len(self.refunds)}", status="processed")


class FakeCarrierClient(CarrierClient):
    name = "fake"

    def __init__(self, fail_create: bool = False, fail_assign: bool = False, fail_cancel: bool = False):
        self.fail_create = fail_create
        self.fail_assign = fail_assign
        self.fail_cancel = fail_cancel
        self.requests = []
        self.cancelled = []
        self.events = []

    def create_shipment(self, request):
        if self.fail_create:
            raise ExternalCollaboratorFailure("carrier rejected shipment")
        self.requests.append(request)
        n = len(self.requests)
        return Shipment(carrier_order_id=f"CO-{n}", shipment_id=f"SH-{n}")

    def assign_carrier(self, shipment_id):
        if self.fail_assign:
            raise ExternalCollaboratorFailure("no courier available")
        return CarrierAssignment(tracking_code=f"AWB-{shipment_id}", carrier_name="BlueDart")

    def cancel(self, carrier_order_id):
        if self.fail_cancel:
            raise ExternalCollaboratorFailure("cancel window closed")
        self.cancelled.append(carrier_order_id)

    def track(self, tracking_code):
        return list(self.events)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CARRIER_DISPATCH': 'inline',
        'SQLITE_IMMEDIATE_TRANSACTIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    saved_config = dict(app.config)
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
    app.config.clear()
    app.config.update(saved_config)
    payment_gateway.set_payment_gateway(app, DisabledPaymentGateway())
    carrier_service.set_carrier_client(app, DisabledCarrierClient())


@pytest.fixture(scope='function')
def gateway(app, db_session):
    """Install a fake payment gateway for the test."""
    fake = FakePaymentGateway()
    payment_gateway.set_payment_gateway(app, fake)
    return fake


@pytest.fixture(scope='function')
def carrier(app, db_session):
    """Install a fake carrier and enable carrier sync for the test."""
    fake = FakeCarrierClient()
    carrier_service.set_carrier_client(app, fake)
    app.config['CARRIER_ENABLED'] = True
    return fake


@pytest.fixture(scope='function')
def product(db_session):
    p = Product(name="Steel Bolt", slug="steel-bolt", is_active=True)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def make_variant(db_session, product):
    """Factory: make_variant(price="100.00", quantity=50, sale_price=None, sku=None)."""
    counter = {"n": 0}

    def _make(price="100.00", quantity=50, sale_price=None, sku=None, product_id=None):
        counter["n"] += 1
        v = Variant(
            product_id=product_id or product.id,
            sku=sku or f"BOLT-{counter['n']:03d}",
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            quantity=quantity,
            is_active=True,
            shipping_length=Decimal("10"),
            shipping_breadth=Decimal("5"),
            shipping_height=Decimal("2"),
            shipping_weight=Decimal("0.250"),
        )
        db_session.add(v)
        db_session.commit()
        return v

    return _make


@pytest.fixture(scope='function')
def variant(make_variant):
    return make_variant()


@pytest.fixture(scope='function')
def address(db_session):
    a = Address(
        user_id=USER_ID,
        name="Asha Rao",
        line1="12 MG Road",
        city="Bengaluru",
        state="KA",
        postal_code="560001",
        country="India",
        phone="9999999999",
    )
    db_session.add(a)
    db_session.commit()
    return a


@pytest.fixture(scope='function')
def partner_coupon(db_session):
    """Coupon SAVE10 (10% off) with one partner on 10% commission."""
    coupon = Coupon(code="SAVE10", discount_type="PERCENTAGE", discount_value=Decimal("10"), is_active=True)
    partner = Partner(name="Influencer", email="influencer@example.com")
    db_session.add_all([coupon, partner])
    db_session.flush()
    db_session.add(CouponPartner(coupon_id=coupon.id, partner_id=partner.id, commission=Decimal("10")))
    db_session.commit()
    return coupon, partner


def add_cart_line(session, variant, quantity, user_id=USER_ID):
    item = CartItem(user_id=user_id, variant_id=variant.id, quantity=quantity)
    session.add(item)
    session.commit()
    return item


def live_window(hours: int = 1):
    now = utcnow()
    return now - timedelta(hours=hours), now + timedelta(hours=hours)


def user_headers(user_id: int = USER_ID) -> dict:
    return {'X-User-Id': str(user_id)}


def admin_headers(admin_id: int = ADMIN_ID) -> dict:
    return {'X-Admin-Id': str(admin_id)}
