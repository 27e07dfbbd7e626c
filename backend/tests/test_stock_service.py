import pytest

from bizdesk.extensions import db
from bizdesk.models import Order, StockTransaction, Product
from bizdesk.services import order_service, stock_service
from bizdesk.services.stock_service import InsufficientStockError
from bizdesk.validation import ValidationError, NotFoundError


def _transactions(product_id):
    return (
        db.session.query(StockTransaction)
        .filter_by(product_id=product_id)
        .order_by(StockTransaction.id)
        .all()
    )


def test_import_sets_weighted_average_price(db_session, admin_user, make_product):
    product = make_product(stock=0)

    stock_service.import_stock(product_code="SP001", quantity=10, unit_price=50000, user=admin_user)
    tx = stock_service.import_stock(product_code="SP001", quantity=10, unit_price=70000, user=admin_user)

    product = db.session.get(Product, product.id)
    assert product.stock_quantity == 20
    assert product.avg_import_price == 60000
    assert tx.stock_before == 10
    assert tx.stock_after == 20
    assert tx.total_value == 700000


def test_import_rejects_unknown_code_and_bad_quantity(db_session, admin_user, make_product):
    make_product()
    with pytest.raises(NotFoundError):
        stock_service.import_stock(product_code="NOPE", quantity=1, unit_price=1, user=admin_user)
    with pytest.raises(ValidationError):
        stock_service.import_stock(product_code="SP001", quantity=0, unit_price=1, user=admin_user)


def test_every_transaction_snapshots_stock(db_session, admin_user, make_product):
    product = make_product(stock=5)

    stock_service.import_stock(product_code="SP001", quantity=3, unit_price=1000, user=admin_user)
    stock_service.adjust_stock(product_code="SP001", quantity=-2, user=admin_user, reason="Damaged")
    order = order_service.create_order({"items": [{"product_id": product.id, "quantity": 4}]}, user=admin_user)
    order_service.cancel_order(order.id, user=admin_user)

    rows = _transactions(product.id)
    assert [r.transaction_type for r in rows] == ["import", "adjustment", "export", "import"]
    for row in rows:
        assert row.stock_after == row.stock_before + row.quantity
    for earlier, later in zip(rows, rows[1:]):
        assert later.stock_before == earlier.stock_after
    assert db.session.get(Product, product.id).stock_quantity == rows[-1].stock_after == 6


def test_adjust_cannot_go_negative(db_session, admin_user, make_product):
    make_product(stock=2)
    with pytest.raises(InsufficientStockError):
        stock_service.adjust_stock(product_code="SP001", quantity=-3, user=admin_user)
    with pytest.raises(ValidationError):
        stock_service.adjust_stock(product_code="SP001", quantity=0, user=admin_user)


def test_create_transaction_adjustment_sets_absolute_level(db_session, admin_user, make_product):
    product = make_product(stock=7)

    tx = stock_service.create_transaction(
        product_id=product.id, transaction_type="adjustment", quantity=4, user=admin_user
    )
    assert tx.quantity == -3
    assert tx.stock_after == 4

    with pytest.raises(ValidationError):
        stock_service.create_transaction(
            product_id=product.id, transaction_type="adjustment", quantity=4, user=admin_user
        )


def test_create_transaction_export_is_checked(db_session, admin_user, make_product):
    product = make_product(stock=3, price=20000)

    tx = stock_service.create_transaction(
        product_id=product.id, transaction_type="export", quantity=2, user=admin_user
    )
    assert tx.quantity == -2
    assert tx.unit_price == 20000

    with pytest.raises(InsufficientStockError) as excinfo:
        stock_service.create_transaction(
            product_id=product.id, transaction_type="export", quantity=2, user=admin_user
        )
    assert excinfo.value.details["on_hand"] == 1

    with pytest.raises(ValidationError):
        stock_service.create_transaction(
            product_id=product.id, transaction_type="gift", quantity=1, user=admin_user
        )


def test_strict_policy_rejects_order_and_persists_nothing(db_session, admin_user, make_product):
    a = make_product("SP001", stock=5)
    b = make_product("SP002", stock=1)

    with pytest.raises(InsufficientStockError) as excinfo:
        order_service.create_order(
            {"items": [
                {"product_id": a.id, "quantity": 2},
                {"product_id": b.id, "quantity": 2},
            ]},
            user=admin_user,
        )

    details = excinfo.value.details["items"]
    assert details == [{
        "product_id": b.id,
        "product_code": "SP002",
        "requested_quantity": 2,
        "on_hand": 1,
    }]
    assert db.session.query(Order).count() == 0
    assert db.session.query(StockTransaction).count() == 0
    assert db.session.get(Product, a.id).stock_quantity == 5
    assert db.session.get(Product, b.id).stock_quantity == 1


def test_failure_after_stock_export_rolls_everything_back(db_session, admin_user, make_product, customer, monkeypatch):
    product = make_product(stock=5)
    product_id = product.id
    seen = []

    def _fail(*args, **kwargs):
        seen.append(db.session.get(Product, product_id).stock_quantity)
        raise RuntimeError("aggregate update failed")

    monkeypatch.setattr(order_service, "_bump_aggregates", _fail)

    with pytest.raises(RuntimeError):
        order_service.create_order(
            {"items": [{"product_id": product.id, "quantity": 3}], "customer_id": customer.id},
            user=admin_user,
        )

    # stock had already been exported when the later step failed
    assert seen == [2]
    assert db.session.get(Product, product_id).stock_quantity == 5
    assert db.session.query(Order).count() == 0
    assert db.session.query(StockTransaction).count() == 0


def test_repeated_lines_are_checked_together(db_session, admin_user, make_product):
    product = make_product(stock=5)
    with pytest.raises(InsufficientStockError):
        order_service.create_order(
            {"items": [
                {"product_id": product.id, "quantity": 3},
                {"product_id": product.id, "quantity": 3},
            ]},
            user=admin_user,
        )


def test_allow_negative_policy_logs_and_proceeds(app, db_session, admin_user, make_product, monkeypatch, caplog):
    monkeypatch.setitem(app.config, "STOCK_POLICY", "allow_negative")
    product = make_product(stock=1)

    order = order_service.create_order({"items": [{"product_id": product.id, "quantity": 3}]}, user=admin_user)

    assert order.status == "active"
    assert db.session.get(Product, product.id).stock_quantity == -2
    assert "below zero" in caplog.text


def test_cancel_restores_stock(db_session, admin_user, make_product):
    product = make_product(stock=10)
    order = order_service.create_order({"items": [{"product_id": product.id, "quantity": 4}]}, user=admin_user)
    assert db.session.get(Product, product.id).stock_quantity == 6

    order_service.cancel_order(order.id, user=admin_user)

    assert db.session.get(Product, product.id).stock_quantity == 10
    returned = _transactions(product.id)[-1]
    assert returned.transaction_type == "import"
    assert returned.order_id == order.id
    assert returned.quantity == 4


def test_stock_summary_and_low_stock(db_session, admin_user, make_product):
    make_product("SP001", stock=2, min_stock=5)
    make_product("SP002", stock=0, min_stock=5)
    stock_service.import_stock(product_code="SP002", quantity=10, unit_price=1000, user=admin_user)

    summary = stock_service.stock_summary()
    assert summary["total_products"] == 2
    assert summary["low_stock_products"] == 1
    assert summary["total_stock_value"] == 10 * 1000

    low = stock_service.low_stock_products()
    assert [p["code"] for p in low] == ["SP001"]


def test_list_transactions_filters(db_session, admin_user, make_product):
    make_product("SP001", stock=0)
    make_product("SP002", stock=0)
    stock_service.import_stock(product_code="SP001", quantity=1, unit_price=1, user=admin_user)
    stock_service.import_stock(product_code="SP002", quantity=1, unit_price=1, user=admin_user)
    stock_service.adjust_stock(product_code="SP002", quantity=1, user=admin_user)

    result = stock_service.list_transactions(search="SP002")
    assert result["total"] == 2

    result = stock_service.list_transactions(transaction_type="adjustment")
    assert result["total"] == 1

    with pytest.raises(ValidationError):
        stock_service.list_transactions(transaction_type="gift")


def test_unpriced_import_keeps_average_price(db_session, admin_user, make_product):
    product = make_product(stock=0)
    stock_service.import_stock(product_code="SP001", quantity=10, unit_price=100000, user=admin_user)

    tx = stock_service.create_transaction(
        product_id=product.id, transaction_type="import", quantity=10, user=admin_user
    )

    product = db.session.get(Product, product.id)
    assert product.stock_quantity == 20
    assert product.avg_import_price == 100000
    assert tx.unit_price == 0
    assert tx.total_value == 0
    assert stock_service.stock_summary()["total_stock_value"] == 20 * 100000

    with pytest.raises(ValidationError):
        stock_service.import_stock(product_code="SP001", quantity=1, unit_price=None, user=admin_user)


def test_quantities_are_bounded(db_session, admin_user, make_product):
    product = make_product(stock=5)

    with pytest.raises(ValidationError):
        stock_service.import_stock(product_code="SP001", quantity=10_000_000, unit_price=1, user=admin_user)
    with pytest.raises(ValidationError):
        stock_service.import_stock(product_code="SP001", quantity=1, unit_price=10**13, user=admin_user)
    with pytest.raises(ValidationError):
        stock_service.adjust_stock(product_code="SP001", quantity=10_000_000, user=admin_user)
    with pytest.raises(ValidationError):
        stock_service.create_transaction(
            product_id=product.id, transaction_type="adjustment", quantity=10_000_000, user=admin_user
        )

    assert db.session.get(Product, product.id).stock_quantity == 5
    assert db.session.query(StockTransaction).count() == 0
