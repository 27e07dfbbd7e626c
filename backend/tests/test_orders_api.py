"""
Order API tests through the Flask test client.
"""

from bizdesk.extensions import db
from bizdesk.models import Order, Product, StockTransaction, Customer, Agent


def _create(client, headers, payload):
    return client.post('/api/orders', json=payload, headers=headers)


def test_create_order_prices_and_exports_stock(client, employee_headers, make_product, customer):
    a = make_product("SP001", stock=10, price=50000)
    b = make_product("SP002", stock=10, price=100000)

    response = _create(client, employee_headers, {
        "items": [
            {"product_id": a.id, "quantity": 2},
            {"product_id": b.id, "quantity": 1},
        ],
        "customer_id": customer.id,
        "vat_rate": 0.1,
        "shipping_fee": 20000,
        "payment_status": "completed",
    })

    assert response.status_code == 201
    order = response.json["order"]
    assert order["order_number"] == "DH000001"
    assert order["subtotal"] == 200000
    assert order["vat_rate_bps"] == 1000
    assert order["vat_amount"] == 20000
    assert order["total_amount"] == 240000
    assert order["paid_amount"] == 240000
    assert order["customer_name"] == customer.name
    assert [i["line_total"] for i in order["items"]] == [100000, 100000]

    assert db.session.get(Product, a.id).stock_quantity == 8
    assert db.session.get(Product, b.id).stock_quantity == 9

    refreshed = db.session.get(Customer, customer.id)
    assert refreshed.total_orders == 1
    assert refreshed.total_amount == 240000
    assert db.session.get(Agent, customer.agent_id).total_orders == 0


def test_order_numbers_are_sequential(client, employee_headers, make_product):
    product = make_product(stock=10)
    numbers = [
        _create(client, employee_headers, {"items": [{"product_id": product.id, "quantity": 1}]}).json["order"]["order_number"]
        for _ in range(3)
    ]
    assert numbers == ["DH000001", "DH000002", "DH000003"]


def test_create_order_validation(client, employee_headers, make_product):
    product = make_product(stock=10)

    response = _create(client, employee_headers, {"items": []})
    assert response.status_code == 400

    response = _create(client, employee_headers, {"items": [{"product_id": product.id, "quantity": 0}]})
    assert response.status_code == 400

    response = _create(client, employee_headers, {"items": [{"product_id": 9999, "quantity": 1}]})
    assert response.status_code == 404

    response = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 1}],
        "vat_rate": 2,
    })
    assert response.status_code == 400

    assert db.session.query(Order).count() == 0


def test_oversized_amounts_are_rejected_before_saving(client, employee_headers, make_product):
    product = make_product(stock=5)

    response = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 10_000_000, "unit_price": 999_999_999_999}],
    })
    assert response.status_code == 400

    response = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 1}],
        "shipping_fee": 10**20,
    })
    assert response.status_code == 400

    # every input within its own bound, but the order total is not
    response = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 2, "unit_price": 999_999_999_999}],
    })
    assert response.status_code == 400

    assert db.session.query(Order).count() == 0
    assert db.session.get(Product, product.id).stock_quantity == 5


def test_large_vnd_order_is_stored_exactly(client, employee_headers, make_product):
    product = make_product(stock=20_000, price=250_000)

    response = _create(client, employee_headers, {"items": [{"product_id": product.id, "quantity": 10_000}]})

    assert response.status_code == 201
    assert response.json["order"]["total_amount"] == 2_500_000_000
    assert db.session.query(Order).one().total_amount == 2_500_000_000


def test_insufficient_stock_returns_409_and_saves_nothing(client, employee_headers, make_product):
    product = make_product(stock=2)

    response = _create(client, employee_headers, {"items": [{"product_id": product.id, "quantity": 3}]})

    assert response.status_code == 409
    assert response.json["details"]["items"][0]["on_hand"] == 2
    assert db.session.query(Order).count() == 0
    assert db.session.query(StockTransaction).count() == 0
    assert db.session.get(Product, product.id).stock_quantity == 2


def test_cancel_twice_is_rejected(client, employee_headers, make_product, customer):
    product = make_product(stock=5)
    order_id = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 5}],
        "customer_id": customer.id,
    }).json["order"]["id"]

    response = client.post(f'/api/orders/{order_id}/cancel', headers=employee_headers)
    assert response.status_code == 200
    assert response.json["order"]["status"] == "cancelled"
    assert db.session.get(Product, product.id).stock_quantity == 5
    assert db.session.get(Customer, customer.id).total_orders == 0

    response = client.post(f'/api/orders/{order_id}/cancel', headers=employee_headers)
    assert response.status_code == 400
    assert db.session.get(Product, product.id).stock_quantity == 5

    response = client.put(f'/api/orders/{order_id}', json={"status": "active"}, headers=employee_headers)
    assert response.status_code == 400


def test_update_vat_recomputes_totals(client, employee_headers, make_product, customer):
    product = make_product(stock=5, price=100000)
    order_id = _create(client, employee_headers, {
        "items": [{"product_id": product.id, "quantity": 2}],
        "customer_id": customer.id,
    }).json["order"]["id"]

    response = client.put(f'/api/orders/{order_id}', json={"vat_rate": 0.08, "shipping_fee": 10000}, headers=employee_headers)

    assert response.status_code == 200
    order = response.json["order"]
    assert order["vat_amount"] == 16000
    assert order["total_amount"] == 226000
    assert db.session.get(Customer, customer.id).total_amount == 226000

    response = client.get(f'/api/orders/{order_id}', headers=employee_headers)
    assert response.json["order"]["totals_verified"] is True

    response = client.put(f'/api/orders/{order_id}', json={"items": []}, headers=employee_headers)
    assert response.status_code == 400
    response = client.put(f'/api/orders/{order_id}', json={"total_amount": 1}, headers=employee_headers)
    assert response.status_code == 400


def test_payment_status_updates_amounts(client, employee_headers, make_product):
    product = make_product(stock=5, price=30000)
    order_id = _create(client, employee_headers, {"items": [{"product_id": product.id, "quantity": 1}]}).json["order"]["id"]

    response = client.patch(f'/api/orders/{order_id}/payment-status', json={"payment_status": "debt"}, headers=employee_headers)
    assert response.status_code == 200
    assert response.json["order"]["debt_amount"] == 30000
    assert response.json["order"]["paid_amount"] == 0

    response = client.patch(f'/api/orders/{order_id}/payment-status', json={"payment_status": "refunded"}, headers=employee_headers)
    assert response.status_code == 400

    response = client.get('/api/orders/pending-payment', headers=employee_headers)
    assert [o["id"] for o in response.json["data"]] == [order_id]


def test_list_orders_paginates_and_filters(client, employee_headers, make_product):
    product = make_product(stock=50)
    for status in ("pending", "completed", "completed"):
        _create(client, employee_headers, {
            "items": [{"product_id": product.id, "quantity": 1}],
            "payment_status": status,
        })

    response = client.get('/api/orders?page=1&limit=2', headers=employee_headers)
    assert response.status_code == 200
    body = response.json
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert len(body["data"]) == 2
    assert "items" not in body["data"][0]

    response = client.get('/api/orders?payment_status=completed', headers=employee_headers)
    assert response.json["total"] == 2

    response = client.get('/api/orders?search=DH000002', headers=employee_headers)
    assert [o["order_number"] for o in response.json["data"]] == ["DH000002"]

    response = client.get('/api/orders?start_date=not-a-date', headers=employee_headers)
    assert response.status_code == 400

    response = client.get('/api/orders/stats', headers=employee_headers)
    assert response.json["total_orders"] == 3
    assert response.json["completed_orders"] == 2


def test_orders_require_auth(client):
    assert client.get('/api/orders').status_code == 401
    assert client.post('/api/orders', json={}).status_code == 401
