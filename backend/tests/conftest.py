"""
Pytest fixtures for marketpay backend tests.

Provides test database setup, tenant/user/product fixtures, a transaction
factory, and a recording notification sender.
"""

import pytest
from marketpay import create_app
from marketpay.extensions import db, notifications
from marketpay.models import Tenant, User, Product
from marketpay.models.tenancy import VERIFICATION_DOCUMENT_VERIFIED, VERIFICATION_PENDING
from marketpay.services import transaction_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'NOTIFICATION_DISPATCH_MODE': 'inline',
    'PUSH_SEND_URL': None,
    'DB_RETRY_ATTEMPTS': 3,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        notifications.set_sender(None)


class RecordingSender:
    """Notification sender that remembers what it was asked to deliver."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, tenant_id, payload):
        self.sent.append((tenant_id, payload))
        if self.fail:
            raise RuntimeError("push service unavailable")


@pytest.fixture(scope='function')
def sender(db_session):
    """Install a RecordingSender for the test."""
    recorder = RecordingSender()
    notifications.set_sender(recorder)
    return recorder


def _make_tenant(db_session, name, slug, verified):
    tenant = Tenant(
        name=name,
        slug=slug,
        is_verified=verified,
        verification_status=VERIFICATION_DOCUMENT_VERIFIED if verified else VERIFICATION_PENDING,
    )
    db_session.add(tenant)
    db_session.commit()
    return tenant


def _make_user(db_session, name, email, tenant=None, is_super_admin=False):
    user = User(
        name=name,
        email=email,
        phone="+250788000000",
        tenant_id=tenant.id if tenant else None,
        is_super_admin=is_super_admin,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def tenant(db_session):
    """Verified tenant (passes the verification gate)."""
    return _make_tenant(db_session, "Kigali Crafts", "kigali-crafts", verified=True)


@pytest.fixture(scope='function')
def other_tenant(db_session):
    """Second verified tenant, for cross-tenant checks."""
    return _make_tenant(db_session, "Huye Textiles", "huye-textiles", verified=True)


@pytest.fixture(scope='function')
def unverified_tenant(db_session):
    return _make_tenant(db_session, "New Shop", "new-shop", verified=False)


@pytest.fixture(scope='function')
def owner(db_session, tenant):
    return _make_user(db_session, "Olive Owner", "owner@kigali-crafts.rw", tenant=tenant)


@pytest.fixture(scope='function')
def other_owner(db_session, other_tenant):
    return _make_user(db_session, "Otto Owner", "owner@huye-textiles.rw", tenant=other_tenant)


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "Claire Customer", "claire@example.rw")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "Chris Customer", "chris@example.rw")


@pytest.fixture(scope='function')
def super_admin(db_session):
    return _make_user(db_session, "Sam Admin", "admin@marketpay.rw", is_super_admin=True)


@pytest.fixture(scope='function')
def products(db_session, tenant):
    """Two products: 1000 and 500 RWF."""
    basket = Product(tenant_id=tenant.id, name="Woven Basket", price=1000)
    candle = Product(tenant_id=tenant.id, name="Beeswax Candle", price=500)
    db_session.add_all([basket, candle])
    db_session.commit()
    return basket, candle


@pytest.fixture(scope='function')
def make_transaction(db_session, tenant, customer, products):
    """
    Factory for checkouts against the verified tenant.

    Default basket: 2 x Woven Basket (1000) + 1 x Beeswax Candle (500).
    submit=True moves the transaction to awaiting_verification.
    """
    basket, candle = products

    def _make(items=None, submit=True, delivery_type="direct", shipping_address=None, customer_user=None):
        buyer = customer_user or customer
        txn = transaction_service.create_transaction(
            customer_id=buyer.id,
            tenant_id=tenant.id,
            items=items or [
                {"product_id": basket.id, "quantity": 2},
                {"product_id": candle.id, "quantity": 1},
            ],
            customer_name=buyer.name,
            customer_phone="+250788123456",
            delivery_type=delivery_type,
            shipping_address=shipping_address,
        )
        if submit:
            transaction_service.submit_payment_instrument(txn.id, buyer.id, "MM-2024-88123")
        return txn

    return _make


@pytest.fixture(scope='function')
def headers_for():
    """Build the gateway identity header for a user."""
    def _headers(user) -> dict:
        return {'X-Actor-Id': str(user.id)}
    return _headers
