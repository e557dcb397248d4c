"""
Pytest fixtures for stockledger backend tests.

Provides test database setup, tenant/catalog fixtures, a stock helper and the
test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Business, BusinessLocation, Product, ProductVariation
from stockledger.services import ledger_service
from stockledger.services.concurrency import atomic


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOG_LEVEL': 'DEBUG',
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
        # Clear all data but keep schema (Core deletes bypass the ledger's ORM guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def business(db_session):
    """Create Business A (first tenant)."""
    business = Business(name="Acme Retail", code="ACME")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def other_business(db_session):
    """Create Business B (second tenant)."""
    business = Business(name="Beta Goods", code="BETA")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def location_a(db_session, business):
    location = BusinessLocation(business_id=business.id, name="Main Store", code="A")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b(db_session, business):
    location = BusinessLocation(business_id=business.id, name="Warehouse", code="B")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def foreign_location(db_session, other_business):
    """Location owned by the other tenant."""
    location = BusinessLocation(business_id=other_business.id, name="Beta Store", code="B1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def product(db_session, business):
    product = Product(business_id=business.id, name="T-Shirt", alert_quantity=5)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variation(db_session, business, product):
    variation = ProductVariation(business_id=business.id, product_id=product.id, name="T-Shirt / M", sku="TS-M")
    db_session.add(variation)
    db_session.commit()
    return variation


@pytest.fixture(scope='function')
def variation_b(db_session, business, product):
    variation = ProductVariation(business_id=business.id, product_id=product.id, name="T-Shirt / L", sku="TS-L")
    db_session.add(variation)
    db_session.commit()
    return variation


@pytest.fixture(scope='function')
def serialized_variation(db_session, business):
    """Variation of a serialized product (one serial number per unit)."""
    phone = Product(business_id=business.id, name="Phone", is_serialized=True)
    db_session.add(phone)
    db_session.flush()
    variation = ProductVariation(business_id=business.id, product_id=phone.id, name="Phone / Black", sku="PH-BLK")
    db_session.add(variation)
    db_session.commit()
    return variation


@pytest.fixture(scope='function')
def stock(db_session):
    """Return a helper that records committed opening stock for a key."""
    def _stock(variation, location, quantity, **kwargs):
        with atomic(db_session):
            entry = ledger_service.set_opening_stock(
                business_id=variation.business_id,
                variation_id=variation.id,
                location_id=location.id,
                quantity=quantity,
                session=db_session,
                **kwargs,
            )
        return entry
    return _stock
