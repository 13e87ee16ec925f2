"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, product factories, and test client.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product, StockMovement


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
def make_product(db_session):
    """Factory: persist a product with an opening stock balance."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "name": f"Product {counter['n']}",
            "purchase_price_cents": 400,
            "selling_price_cents": 1000,
            "current_stock": 10,
            "min_stock": 5,
        }
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Stock 10, minimum 5, sells at 10.00."""
    return make_product(name="Claw hammer", reference="MART-500")


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Fresh current_stock read, bypassing the identity map."""
    def _stock_of(product_id: int) -> int:
        db_session.expire_all()
        return db_session.get(Product, product_id).current_stock
    return _stock_of


@pytest.fixture(scope='function')
def movements_for(db_session):
    """Movements of one product, oldest first."""
    def _movements_for(product_id: int) -> list[StockMovement]:
        return (
            db_session.query(StockMovement)
            .filter_by(product_id=product_id)
            .order_by(StockMovement.id.asc())
            .all()
        )
    return _movements_for
