"""
Pytest fixtures for marketplace backend tests.

Provides an in-memory database, a fake bank gateway injected into the app,
merchant/catalog/order factories and business auth headers.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import (
    Business, Item, Order, OrderCost, OrderLineItem, Promotion, PromotionDetail,
)
from marketplace.services.bank_gateway import CaptureResult, GatewayToken
from marketplace.services.business_auth_service import issue_business_token
from marketplace.time_utils import utcnow


class FakeGateway:
    """In-process BankGateway recording every capture."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.captures = []
        self.error = None
        self.response = {"code": 0, "message": "OK", "reference": "REF-1", "approvalCode": "A-1"}

    def authenticate(self, deadline=None):
        return GatewayToken(access_token="test-token", expires_in=3600, scope="payment", token_type="Bearer")

    def capture(self, operation_id, amount, deadline=None):
        self.captures.append((operation_id, amount))
        if self.error is not None:
            raise self.error
        return CaptureResult.from_response(operation_id, amount, dict(self.response))


@pytest.fixture(scope='session')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='session')
def app(gateway):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BANK_CLIENT_ID': 'test-client',
        'BANK_CLIENT_SECRET': 'test-secret',
        'BANK_TERMINAL_AUTH': 'test-terminal',
    }, gateway=gateway)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, gateway):
    """Create fresh database for each test."""
    gateway.reset()
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def business(db_session):
    business = Business(name="Corner Shop", is_active=True)
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def other_business(db_session):
    business = Business(name="Across The Street", is_active=True)
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def auth_headers(business):
    _, plaintext = issue_business_token(business.id, "tests")
    return {'Authorization': f'Bearer {plaintext}'}


@pytest.fixture(scope='function')
def make_item(db_session, business):
    def _make(code, price, amount="10", business_id=None, name=None, visible=True):
        item = Item(
            business_id=business_id or business.id,
            code=code,
            name=name or f"Item {code}",
            price=Decimal(str(price)),
            amount=Decimal(str(amount)),
            visible=visible,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def make_order(db_session, business):
    """
    Order factory. lines is a list of (item, quantity) or (item, quantity, captured_price).
    """
    def _make(lines, delivery_price="0", bonus="0", service_fee="0", payment_id="op-1", extra=None,
              business_id=None):
        order = Order(
            business_id=business_id or business.id,
            user_id=1,
            delivery_type="DELIVERY",
            delivery_price=Decimal(str(delivery_price)),
            bonus=Decimal(str(bonus)),
            payment_id=payment_id,
            extra=extra,
        )
        db_session.add(order)
        db_session.flush()
        for line in lines:
            item, quantity = line[0], line[1]
            price = line[2] if len(line) > 2 else item.price
            db_session.add(OrderLineItem(
                order_id=order.id,
                item_id=item.id,
                quantity=quantity,
                price=Decimal(str(price)),
            ))
        db_session.add(OrderCost(order_id=order.id, cost=Decimal("0"), service_fee=Decimal(str(service_fee))))
        db_session.commit()
        return order
    return _make


@pytest.fixture(scope='function')
def make_promotion(db_session, business):
    """
    Promotion factory; details are dicts with item, type and parameters.
    Active from yesterday to tomorrow unless start/end are given.
    """
    def _make(details, start=None, end=None, visible=True, business_id=None, name="Promo"):
        now = utcnow()
        promotion = Promotion(
            business_id=business_id or business.id,
            name=name,
            public_name=name,
            visible=visible,
            start_promotion_date=start or now - timedelta(days=1),
            end_promotion_date=end or now + timedelta(days=1),
        )
        db_session.add(promotion)
        db_session.flush()
        created = []
        for fields in details:
            detail = PromotionDetail(
                promotion_id=promotion.id,
                item_id=fields["item"].id,
                type=fields["type"],
                discount=fields.get("discount"),
                base_amount=fields.get("base_amount"),
                add_amount=fields.get("add_amount"),
            )
            db_session.add(detail)
            created.append(detail)
        db_session.commit()
        return promotion, created
    return _make
