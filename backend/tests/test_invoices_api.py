"""
Invoice API tests: issuing from an order, lookups, printing and stats.
"""

from bizdesk.extensions import db
from bizdesk.models import Invoice


def _order(client, headers, product, **extra):
    payload = {"items": [{"product_id": product.id, "quantity": 2}], **extra}
    response = client.post('/api/orders', json=payload, headers=headers)
    assert response.status_code == 201
    return response.json["order"]


def _issue(client, headers, order_number, **extra):
    return client.post('/api/invoices', json={"order_number": order_number, **extra}, headers=headers)


def test_invoice_copies_order_totals(client, employee_headers, make_product, customer):
    product = make_product(stock=10, price=100000)
    order = _order(client, employee_headers, product, customer_id=customer.id, vat_rate=0.08,
                   shipping_fee=15000, payment_status="debt")

    response = _issue(client, employee_headers, order["order_number"], notes="Giao buoi sang")

    assert response.status_code == 201
    invoice = response.json["invoice"]
    assert invoice["invoice_number"] == "HD000001"
    assert invoice["order_number"] == order["order_number"]
    assert invoice["customer_name"] == customer.name
    assert invoice["subtotal"] == 200000
    assert invoice["vat_amount"] == 16000
    assert invoice["shipping_fee"] == 15000
    assert invoice["total_amount"] == order["total_amount"] == 231000
    assert invoice["payment_status"] == "debt"
    assert invoice["is_printed"] is False
    assert [i["line_total"] for i in invoice["items"]] == [200000]


def test_one_invoice_per_order(client, employee_headers, make_product):
    product = make_product(stock=10)
    order = _order(client, employee_headers, product)

    assert _issue(client, employee_headers, order["order_number"]).status_code == 201
    assert _issue(client, employee_headers, order["order_number"]).status_code == 409
    assert db.session.query(Invoice).count() == 1


def test_issue_validation(client, employee_headers, make_product):
    product = make_product(stock=10)
    order = _order(client, employee_headers, product)

    assert client.post('/api/invoices', json={}, headers=employee_headers).status_code == 400
    assert _issue(client, employee_headers, "DH999999").status_code == 404

    client.post(f'/api/orders/{order["id"]}/cancel', headers=employee_headers)
    response = _issue(client, employee_headers, order["order_number"])
    assert response.status_code == 400
    assert db.session.query(Invoice).count() == 0


def test_lookup_print_and_stats(client, employee_headers, make_product):
    product = make_product(stock=10, price=50000)
    first = _order(client, employee_headers, product, payment_status="completed")
    second = _order(client, employee_headers, product)
    first_id = _issue(client, employee_headers, first["order_number"]).json["invoice"]["id"]
    _issue(client, employee_headers, second["order_number"])

    response = client.get(f'/api/invoices/order/{first["order_number"]}', headers=employee_headers)
    assert response.json["invoice"]["id"] == first_id
    assert client.get('/api/invoices/order/DH999999', headers=employee_headers).status_code == 404

    response = client.get('/api/invoices/unprinted', headers=employee_headers)
    assert len(response.json["data"]) == 2

    response = client.get(f'/api/invoices/{first_id}/print-data', headers=employee_headers)
    assert response.status_code == 200
    assert response.json["company"]["name"]
    assert response.json["items"][0]["product_code"] == "SP001"

    response = client.patch(f'/api/invoices/{first_id}/mark-printed', headers=employee_headers)
    assert response.status_code == 200
    assert response.json["invoice"]["is_printed"] is True
    assert response.json["invoice"]["printed_by_name"] == "Employee"

    response = client.get('/api/invoices?is_printed=false', headers=employee_headers)
    assert response.json["total"] == 1
    response = client.get('/api/invoices?search=HD000001', headers=employee_headers)
    assert [i["id"] for i in response.json["data"]] == [first_id]

    response = client.get('/api/invoices/stats', headers=employee_headers)
    assert response.json == {
        "total_invoices": 2,
        "total_amount": 200000,
        "total_paid": 100000,
        "total_debt": 0,
        "printed_invoices": 1,
    }


def test_invoices_require_auth(client):
    assert client.get('/api/invoices').status_code == 401
    assert client.post('/api/invoices', json={"order_number": "DH000001"}).status_code == 401
