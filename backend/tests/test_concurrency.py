"""
Concurrent order creation against one product.

Uses a file-backed SQLite database so each thread gets its own connection;
the in-memory database shares a single connection and cannot exercise locking.
"""

import threading

import pytest

from bizdesk import create_app
from bizdesk.config import TestConfig
from bizdesk.extensions import db
from bizdesk.models import User, Product, Order
from bizdesk.services import order_service
from bizdesk.services.auth_service import hash_password
from bizdesk.services.stock_service import InsufficientStockError


@pytest.fixture
def file_app(tmp_path):
    app = create_app(TestConfig, overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
    })
    with app.app_context():
        db.create_all()
        user = User(username="seller", full_name="Seller", password_hash=hash_password("secret123"), role="employee")
        product = Product(code="SP001", name="Ao thun", stock_quantity=5, current_price=100000)
        db.session.add_all([user, product])
        db.session.commit()
        ids = {"user_id": user.id, "product_id": product.id}
    yield app, ids
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _place_order(app, ids, barrier, results):
    with app.app_context():
        user = db.session.get(User, ids["user_id"])
        barrier.wait()
        try:
            order = order_service.create_order(
                {"items": [{"product_id": ids["product_id"], "quantity": 3}]},
                user=user,
            )
            results.append(("ok", order.order_number))
        except InsufficientStockError as e:
            results.append(("insufficient", e.details))
        finally:
            db.session.remove()


def test_two_orders_compete_for_the_same_stock(file_app):
    app, ids = file_app
    barrier = threading.Barrier(2)
    results = []

    threads = [threading.Thread(target=_place_order, args=(app, ids, barrier, results)) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    outcomes = sorted(kind for kind, _ in results)
    assert outcomes == ["insufficient", "ok"]

    with app.app_context():
        assert db.session.get(Product, ids["product_id"]).stock_quantity == 2
        assert db.session.query(Order).count() == 1
