"""
Pytest fixtures for invoicing backend tests.

Provides test database setup, the test client, and small factories for
customers, purchase lots and virtual products.
"""

import pytest
from invoicing import create_app
from invoicing.extensions import db
from invoicing.services import customer_service, purchase_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SYNC_DISPATCH_INLINE': True,
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
def customer(db_session):
    """A regular (ledger-backed) customer."""
    return customer_service.create_customer({
        "name": "Acme Traders",
        "company": "Acme Traders Pvt Ltd",
        "email": "accounts@acme.test",
        "phone": "+91 98000 00000",
    })


@pytest.fixture(scope='function')
def make_purchase(db_session):
    """Factory for purchase lots; purchase_date orders FIFO consumption."""
    def _make(quantity=10, unit_price_cents=100, product_id="P1", variant_id="V1", purchase_date="2026-01-01T00:00:00Z"):
        return purchase_service.create_purchase({
            "product_id": product_id,
            "variant_id": variant_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "purchase_date": purchase_date,
            "supplier": "Wholesale Co",
        })
    return _make


@pytest.fixture(scope='function')
def gift_box(db_session):
    """Virtual product: 2 x P1/V1 + 1 x P2/V2 per box, plus a packaging expense."""
    return purchase_service.create_virtual_product({
        "name": "Gift Box",
        "sku": "BOX-001",
        "base_price_cents": 2500,
        "components": [
            {"product_id": "P1", "variant_id": "V1", "quantity": 2},
            {"product_id": "P2", "variant_id": "V2", "quantity": 1},
        ],
        "custom_expenses": [
            {"name": "Wrapping", "amount_cents": 50, "category": "packaging"},
        ],
    })


def item(name="Widget", quantity=1, unit_price_cents=100, **extra) -> dict:
    """Invoice item payload helper."""
    return {"product_name": name, "quantity": quantity, "unit_price_cents": unit_price_cents, **extra}
