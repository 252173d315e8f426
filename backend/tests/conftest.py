"""
Pytest fixtures for Sportify backend tests.

Provides an in-memory database, the test client, and a small catalog:
a customer, a supplier with an email, staff/admin actors, and products.
"""

import pytest
from sportify import create_app
from sportify.extensions import db
from sportify.models import User, Product
from sportify.models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF, ROLE_SUPPLIER


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DISPATCH_ALERTS_INLINE': True,
        'LOW_STOCK_EMAIL_SENDER': None,
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


def _user(db_session, email, role, **kwargs):
    user = User(email=email, role=role, is_active=True, **kwargs)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _user(db_session, "runner@example.com", ROLE_CUSTOMER, first_name="Nimal")


@pytest.fixture(scope='function')
def supplier(db_session):
    return _user(db_session, "supply@gear.example", ROLE_SUPPLIER, first_name="Gear Co")


@pytest.fixture(scope='function')
def staff(db_session):
    return _user(db_session, "staff@sportify.local", ROLE_STAFF)


@pytest.fixture(scope='function')
def admin(db_session):
    return _user(db_session, "admin@sportify.local", ROLE_ADMIN)


@pytest.fixture(scope='function')
def product(db_session, supplier):
    """Football priced at 1000.00 (100000 cents)."""
    p = Product(
        sku="FB-001",
        name="Match Football",
        price_cents=100000,
        supplier_user_id=supplier.id,
        min_stock_level=5,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def other_product(db_session, supplier):
    p = Product(
        sku="BAT-001",
        name="Cricket Bat",
        price_cents=2550,
        supplier_user_id=supplier.id,
    )
    db_session.add(p)
    db_session.commit()
    return p


def headers_for(user):
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return headers_for(customer)


@pytest.fixture(scope='function')
def staff_headers(staff):
    return headers_for(staff)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)
