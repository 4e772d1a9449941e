"""
Pytest fixtures for invoicing backend tests.

Provides test database setup, users with and without feature flags,
bearer tokens and the Flask test client.
"""

from datetime import date

import pytest
from invoicing import create_app
from invoicing.extensions import db
from invoicing.models import Client, Product
from invoicing.services import auth_service, session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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


def _make_user(db_session, username, role="user", permissions=None):
    user = auth_service.build_user(
        username,
        "Password123",
        email=f"{username}@example.com",
        full_name=username.title(),
        role=role,
        permissions=permissions,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Admin: every flag implicitly."""
    return _make_user(db_session, "admin", role="admin")


@pytest.fixture(scope='function')
def regular_user(db_session):
    """Regular user with the default flags (everything except editUser)."""
    return _make_user(db_session, "regular")


@pytest.fixture(scope='function')
def restricted_user(db_session):
    """Regular user with every flag turned off."""
    return _make_user(
        db_session,
        "restricted",
        permissions={
            "clients": False,
            "products": False,
            "invoices": False,
            "deliveries": False,
            "statistics": False,
            "warehouse": False,
            "editUser": False,
        },
    )


@pytest.fixture(scope='function')
def user_manager(db_session):
    """Regular user that also holds the editUser flag."""
    return _make_user(db_session, "manager", permissions={"editUser": True})


def get_token(user) -> str:
    """Issue a session directly (no login request)."""
    _, token = session_service.create_session(user.id, user_agent="pytest", ip_address="127.0.0.1")
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(get_token(admin_user))


@pytest.fixture(scope='function')
def user_headers(regular_user):
    return auth_headers(get_token(regular_user))


@pytest.fixture(scope='function')
def restricted_headers(restricted_user):
    return auth_headers(get_token(restricted_user))


@pytest.fixture(scope='function')
def sample_client(db_session, admin_user):
    client = Client(
        name="Sample Client",
        legal_name="Sample Client LLC",
        mb="12345678",
        pib="987654321",
        address="123 Sample Street",
        created_by=admin_user.id,
    )
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture(scope='function')
def products(db_session, admin_user):
    """PROD001..PROD003 weighing 500, 750 and 1000 per unit."""
    items = [
        Product(code="PROD001", name="Sample Product 1", price_cents=10000, weight=500, created_by=admin_user.id),
        Product(code="PROD002", name="Sample Product 2", price_cents=15000, weight=750, created_by=admin_user.id),
        Product(code="PROD003", name="Sample Product 3", price_cents=20000, weight=1000, created_by=admin_user.id),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


def lot_payload(name="Sample Group", original=10000, reservation=500) -> dict:
    return {
        "name": name,
        "quantity_type": "weight",
        "original_quantity": original,
        "shipment_date": date(2026, 3, 1).isoformat(),
        "reservation_type": "weight",
        "reservation_amount": reservation,
    }


def invoice_payload(client_id, product_lines, number="INV-001", vat_rate=20) -> dict:
    return {
        "number": number,
        "date": "2026-03-10",
        "due_date": "2026-04-10",
        "client_id": client_id,
        "vat_rate": vat_rate,
        "items": [
            {"product_id": product.id, "quantity": quantity, "unit_price_cents": product.price_cents}
            for product, quantity in product_lines
        ],
    }
