from datetime import datetime
from decimal import Decimal

import pytest

from bizdesk.extensions import db
from bizdesk.services import order_service, statistics_service
from bizdesk.services.statistics_service import compute_change
from bizdesk.time_utils import month_window
from bizdesk.validation import ValidationError

TZ = "Asia/Ho_Chi_Minh"


@pytest.mark.parametrize("current, previous, percent, formatted", [
    (225, 200, 12.5, "+12.5%"),
    (97, 100, -3.0, "-3.0%"),
    (0, 0, 0.0, "+0.0%"),
    (5, 0, 100.0, "+100.0%"),
    (0, 100, -100.0, "-100.0%"),
    (100, 100, 0.0, "+0.0%"),
    (150, 100, 50.0, "+50.0%"),
    (50, 100, -50.0, "-50.0%"),
])
def test_compute_change(current, previous, percent, formatted):
    result = compute_change(current, previous)
    assert result.change == current - previous
    assert result.change_percent == pytest.approx(percent)
    assert result.formatted == formatted


def test_compute_change_rounds_to_one_decimal():
    assert compute_change(1, 3).formatted == "-66.7%"
    assert compute_change(2, 3).formatted == "-33.3%"


@pytest.mark.parametrize("current, previous", [
    (-1, 10),
    (10, -1),
    (True, 1),
    ("10", 5),
    (float("nan"), 1),
    (1, float("inf")),
    (Decimal("NaN"), 1),
])
def test_compute_change_rejects_bad_input(current, previous):
    with pytest.raises(ValidationError):
        compute_change(current, previous)


def test_compute_change_accepts_decimal_sums():
    result = compute_change(Decimal("150"), Decimal("100"))
    assert result.change == Decimal("50")
    assert result.change_percent == pytest.approx(50.0)
    assert result.formatted == "+50.0%"

    assert compute_change(Decimal("50.5"), 101).formatted == "-50.0%"


def test_month_window_uses_reference_timezone():
    # 2024-02-29 18:00 UTC is already 1 March in Ho Chi Minh City (UTC+7)
    start, end = month_window(datetime(2024, 2, 29, 18, 0), TZ)
    assert start == datetime(2024, 2, 29, 17, 0)
    assert end == datetime(2024, 3, 31, 17, 0)

    prev_start, prev_end = month_window(datetime(2024, 2, 29, 18, 0), TZ, months_back=1)
    assert prev_start == datetime(2024, 1, 31, 17, 0)
    assert prev_end == start


def test_month_window_crosses_year_boundary():
    start, end = month_window(datetime(2024, 1, 15), TZ, months_back=1)
    assert start == datetime(2023, 11, 30, 17, 0)
    assert end == datetime(2023, 12, 31, 17, 0)


def _order_at(user, product, customer, *, unit_price, quantity=1, when, payment_status="completed"):
    order = order_service.create_order(
        {
            "items": [{"product_id": product.id, "quantity": quantity, "unit_price": unit_price}],
            "customer_id": customer.id,
            "payment_status": payment_status,
        },
        user=user,
    )
    order.created_at = when
    db.session.commit()
    return order


def test_dashboard_cards_compare_calendar_months(db_session, admin_user, make_product, customer):
    product = make_product(stock=100)

    _order_at(admin_user, product, customer, unit_price=100000, quantity=2, when=datetime(2024, 2, 10, 3, 0))
    _order_at(admin_user, product, customer, unit_price=100000, when=datetime(2024, 3, 10, 3, 0))
    _order_at(admin_user, product, customer, unit_price=125000, when=datetime(2024, 3, 12, 3, 0))
    cancelled = _order_at(admin_user, product, customer, unit_price=999000, when=datetime(2024, 3, 13, 3, 0))
    order_service.cancel_order(cancelled.id, user=admin_user)

    cards = statistics_service.dashboard_cards(now=datetime(2024, 3, 15, 5, 0))

    assert cards["revenue"]["current"] == 225000
    assert cards["revenue"]["previous"] == 200000
    assert cards["revenue"]["formatted"] == "+12.5%"
    assert cards["orders"]["current"] == 2
    assert cards["orders"]["formatted"] == "+100.0%"
    assert cards["customers"]["formatted"] == "+0.0%"
    assert cards["window"]["timezone"] == TZ


def test_revenue_by_month_and_debt_report(db_session, admin_user, make_product, customer):
    product = make_product(stock=100)
    _order_at(admin_user, product, customer, unit_price=100000, when=datetime(2024, 3, 10, 3, 0))
    _order_at(admin_user, product, customer, unit_price=50000, when=datetime(2024, 3, 11, 3, 0), payment_status="debt")

    rows = statistics_service.revenue_by_period("month", 2024)
    assert len(rows) == 12
    march = rows[2]
    assert march["period"] == 3
    assert march["total_orders"] == 2
    assert march["total_revenue"] == 150000
    assert march["completed_revenue"] == 100000
    assert march["debt_revenue"] == 50000
    assert march["profit"] == 30000

    assert len(statistics_service.revenue_by_period("quarter", 2024)) == 4
    assert [r["period"] for r in statistics_service.revenue_by_period("year", 2024)] == [2020, 2021, 2022, 2023, 2024]

    report = statistics_service.debt_report()
    assert report["total_debt"] == 50000
    assert report["debt_count"] == 1


def test_revenue_rejects_unknown_period(db_session):
    with pytest.raises(ValidationError):
        statistics_service.revenue_by_period("decade", 2024)


def test_statistics_routes(client, admin_headers, make_product, customer, admin_user):
    product = make_product(stock=10)
    order_service.create_order(
        {"items": [{"product_id": product.id, "quantity": 2}], "customer_id": customer.id, "payment_status": "completed"},
        user=admin_user,
    )

    response = client.get('/api/statistics/dashboard', headers=admin_headers)
    assert response.status_code == 200
    assert response.json["revenue"]["current"] == 200000

    response = client.get('/api/statistics/top-products?period=month', headers=admin_headers)
    assert response.status_code == 200
    assert response.json["data"][0]["product"]["id"] == product.id
    assert response.json["data"][0]["total_sold"] == 2

    response = client.get('/api/statistics/overview?period=fortnight', headers=admin_headers)
    assert response.status_code == 400

    response = client.get('/api/statistics/summary', headers=admin_headers)
    assert response.status_code == 200
    assert response.json["total_orders"] == 1
    assert len(response.json["revenue_by_month"]) == 12

    assert client.get('/api/statistics/dashboard').status_code == 401
