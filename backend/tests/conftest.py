"""
Pytest fixtures for the POS core tests.

Provides an in-memory database, a clean schema per test, the wired PosCore
and a product factory.
"""

import pytest

from poscore import create_app
from poscore.core import get_core
from poscore.extensions import db


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'TAX_RATE_BPS': 0,
    'LOCK_TIMEOUT_SECONDS': 1.0,
    'RETRY_ATTEMPTS': 3,
    'RETRY_BACKOFF_BASE': 0.0,
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
def core(db_session):
    """The PosCore wired by create_app()."""
    return get_core()


@pytest.fixture(scope='function')
def make_product(core):
    """Factory for catalog products with unique SKUs."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:04d}",
            "name": f"Product {counter['n']}",
            "price_cents": 1000,
            "cost_price_cents": 400,
            "initial_stock": 10,
            "reorder_threshold": 2,
            "category": "General",
        }
        fields.update(overrides)
        return core.catalog.create(**fields)

    return _make


@pytest.fixture(scope='function')
def cashier():
    """Opaque actor id as supplied by an external session system."""
    return "cashier-1"
