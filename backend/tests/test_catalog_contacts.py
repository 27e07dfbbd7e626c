"""
Catalog (categories, products) and contacts (customers, agents) through the API.
"""

from bizdesk.extensions import db
from bizdesk.models import Product, StockTransaction, Customer
from bizdesk.services import order_service
from bizdesk.services.contact_service import recompute_aggregates


def test_category_names_are_unique_case_insensitive(client, employee_headers):
    response = client.post('/api/categories', json={"name": "Ao thun"}, headers=employee_headers)
    assert response.status_code == 201
    assert response.json["product_count"] == 0

    response = client.post('/api/categories', json={"name": "AO THUN"}, headers=employee_headers)
    assert response.status_code == 409

    response = client.post('/api/categories', json={}, headers=employee_headers)
    assert response.status_code == 400


def test_category_with_products_cannot_be_deleted(client, employee_headers):
    category_id = client.post('/api/categories', json={"name": "Quan"}, headers=employee_headers).json["id"]
    response = client.post('/api/products', json={
        "code": "Q001", "name": "Quan jean", "category_id": category_id, "current_price": 350000,
    }, headers=employee_headers)
    assert response.status_code == 201

    response = client.get(f'/api/categories/{category_id}', headers=employee_headers)
    assert response.json["product_count"] == 1

    assert client.delete(f'/api/categories/{category_id}', headers=employee_headers).status_code == 409

    response = client.get('/api/categories/active', headers=employee_headers)
    assert [c["name"] for c in response.json["data"]] == ["Quan"]


def test_product_create_books_opening_stock(client, employee_headers):
    response = client.post('/api/products', json={
        "code": "A001", "name": "Ao so mi", "current_price": 250000,
        "avg_import_price": 150000, "stock_quantity": 12,
    }, headers=employee_headers)

    assert response.status_code == 201
    assert response.json["stock_quantity"] == 12
    assert response.json["avg_import_price"] == 150000

    tx = db.session.query(StockTransaction).one()
    assert tx.transaction_type == "import"
    assert tx.stock_before == 0
    assert tx.stock_after == 12


def test_product_rules(client, employee_headers, make_product):
    product = make_product("A001")

    response = client.post('/api/products', json={"code": "A001", "name": "Dup"}, headers=employee_headers)
    assert response.status_code == 409

    response = client.post('/api/products', json={"code": "B001", "name": "Neg", "current_price": -1}, headers=employee_headers)
    assert response.status_code == 400

    response = client.put(f'/api/products/{product.id}', json={"stock_quantity": 99}, headers=employee_headers)
    assert response.status_code == 400

    response = client.put(f'/api/products/{product.id}', json={"current_price": 120000}, headers=employee_headers)
    assert response.status_code == 200
    assert response.json["current_price"] == 120000

    response = client.get('/api/products/code/A001', headers=employee_headers)
    assert response.json["id"] == product.id


def test_product_search_and_low_stock_filter(client, employee_headers, make_product):
    make_product("A001", name="Ao khoac", stock=1, min_stock=5)
    make_product("B001", name="Giay the thao", stock=20, min_stock=5)

    response = client.get('/api/products?search=khoac', headers=employee_headers)
    assert [p["code"] for p in response.json["data"]] == ["A001"]

    response = client.get('/api/products?low_stock=true', headers=employee_headers)
    assert [p["code"] for p in response.json["data"]] == ["A001"]

    response = client.get('/api/products?is_active=maybe', headers=employee_headers)
    assert response.status_code == 400


def test_product_delete_soft_when_history_exists(client, employee_headers, make_product, admin_user):
    used = make_product("A001", stock=5)
    unused_id = make_product("B001", stock=0).id
    order_service.create_order({"items": [{"product_id": used.id, "quantity": 1}]}, user=admin_user)

    response = client.delete(f'/api/products/{used.id}', headers=employee_headers)
    assert response.status_code == 200
    assert response.json["deactivated"] is True
    assert db.session.get(Product, used.id).is_active is False

    response = client.delete(f'/api/products/{unused_id}', headers=employee_headers)
    assert response.json["deleted"] is True
    assert db.session.get(Product, unused_id) is None


def test_customer_crud_and_search_by_agent(client, employee_headers, agent):
    response = client.post('/api/customers', json={
        "name": "Shop Hoa Mai", "phone": "0987654321", "agent_id": agent.id,
    }, headers=employee_headers)
    assert response.status_code == 201
    customer_id = response.json["id"]

    response = client.post('/api/customers', json={"name": "Bad", "phone": "12ab"}, headers=employee_headers)
    assert response.status_code == 400

    response = client.post('/api/customers', json={"name": "Orphan", "agent_id": 9999}, headers=employee_headers)
    assert response.status_code == 404

    response = client.get('/api/customers?search=binh', headers=employee_headers)
    assert [c["id"] for c in response.json["data"]] == [customer_id]

    response = client.get(f'/api/agents/{agent.id}/customers', headers=employee_headers)
    assert [c["id"] for c in response.json["data"]] == [customer_id]

    response = client.put(f'/api/customers/{customer_id}', json={"address": "12 Le Loi"}, headers=employee_headers)
    assert response.status_code == 200

    assert client.delete(f'/api/customers/{customer_id}', headers=employee_headers).status_code == 200


def test_contacts_referenced_by_orders_cannot_be_deleted(client, employee_headers, customer, agent, make_product, admin_user):
    product = make_product(stock=5)
    order_service.create_order(
        {"items": [{"product_id": product.id, "quantity": 1}], "customer_id": customer.id, "agent_id": agent.id},
        user=admin_user,
    )

    assert client.delete(f'/api/customers/{customer.id}', headers=employee_headers).status_code == 409
    assert client.delete(f'/api/agents/{agent.id}', headers=employee_headers).status_code == 409

    response = client.get(f'/api/customers/{customer.id}/orders', headers=employee_headers)
    assert len(response.json["data"]) == 1


def test_agent_requires_phone(client, employee_headers):
    response = client.post('/api/agents', json={"name": "No Phone"}, headers=employee_headers)
    assert response.status_code == 400

    response = client.post('/api/agents', json={"name": "Dai ly Hung", "phone": "0901111222"}, headers=employee_headers)
    assert response.status_code == 201


def test_recompute_aggregates_repairs_drift(db_session, customer, make_product, admin_user):
    product = make_product(stock=5)
    order_service.create_order(
        {"items": [{"product_id": product.id, "quantity": 2}], "customer_id": customer.id},
        user=admin_user,
    )

    row = db.session.get(Customer, customer.id)
    row.total_orders = 7
    row.total_amount = 1
    db.session.commit()

    fixed = recompute_aggregates()

    assert fixed["customers"] == 1
    row = db.session.get(Customer, customer.id)
    assert row.total_orders == 1
    assert row.total_amount == 200000
