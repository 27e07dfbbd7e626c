"""
Pytest fixtures for BizDesk backend tests.

Provides the application, a clean database per test, seeded users with
bearer tokens, and small factories for catalog and contact rows.
"""

import pytest
from bizdesk import create_app
from bizdesk.config import TestConfig
from bizdesk.extensions import db
from bizdesk.models import User, Product, Customer, Agent
from bizdesk.services.auth_service import hash_password
from bizdesk.services import session_service

PASSWORD = "secret123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; the schema is kept."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


def _make_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@bizdesk.local",
        full_name=username.title(),
        password_hash=hash_password(PASSWORD),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", "admin")


@pytest.fixture(scope='function')
def employee_user(db_session):
    return _make_user(db_session, "employee", "employee")


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = session_service.create_session(user_id=admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def employee_headers(employee_user):
    _, token = session_service.create_session(user_id=employee_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with a given opening stock (set directly, no transaction row)."""
    def _make(code="SP001", *, stock=10, price=100000, min_stock=0, name=None):
        product = Product(
            code=code,
            name=name or f"Product {code}",
            stock_quantity=stock,
            min_stock=min_stock,
            current_price=price,
            avg_import_price=0,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def agent(db_session):
    row = Agent(name="Tran Thi Binh", phone="0901234567")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def customer(db_session, agent):
    row = Customer(name="Cong ty An Phat", phone="0912345678", agent_id=agent.id)
    db_session.add(row)
    db_session.commit()
    return row


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
