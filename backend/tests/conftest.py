"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, product factories, and test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.services.products_service import create_product


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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
def make_product(db_session):
    """Factory: create a product (with its initial-stock history entry)."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "name": f"Product {counter['n']}",
            "product_type": "GENERAL",
            "price_cents": 1000,
            "stock_quantity": 10,
            "min_stock": 2,
            "max_stock": 50,
        }
        payload.update(overrides)
        return create_product(payload, actor="fixture")

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """A single active product with 10 units at 10.00."""
    return make_product(name="Widget")
