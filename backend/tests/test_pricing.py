from decimal import Decimal
from types import SimpleNamespace

import pytest

from bizdesk.services.pricing import (
    compute_order_totals,
    vat_rate_to_bps,
    bps_to_vat_rate,
    verify_order_totals,
)
from bizdesk.validation import ValidationError


def test_order_totals_with_vat_and_shipping():
    totals = compute_order_totals(
        [{"quantity": 2, "unit_price": 50000}, {"quantity": 1, "unit_price": 100000}],
        "0.1",
        20000,
    )

    assert totals.line_totals == (100000, 100000)
    assert totals.subtotal == 200000
    assert totals.vat_amount == 20000
    assert totals.shipping_fee == 20000
    assert totals.total_amount == 240000


def test_vat_rounds_half_up():
    totals = compute_order_totals([{"quantity": 1, "unit_price": 5}], "0.1", 0)
    assert totals.vat_amount == 1
    assert totals.total_amount == 6


def test_empty_items_price_to_shipping_only():
    totals = compute_order_totals([], 0, 15000)
    assert totals.subtotal == 0
    assert totals.total_amount == 15000


@pytest.mark.parametrize("item", [
    {"quantity": -1, "unit_price": 1000},
    {"quantity": 1, "unit_price": -1000},
    {"quantity": "abc", "unit_price": 1000},
    {"unit_price": 1000},
])
def test_rejects_bad_line_values(item):
    with pytest.raises(ValidationError):
        compute_order_totals([item], 0, 0)


@pytest.mark.parametrize("rate", ["-0.1", "1.5", "ten", True, "nan"])
def test_rejects_bad_vat_rate(rate):
    with pytest.raises(ValidationError):
        compute_order_totals([{"quantity": 1, "unit_price": 1000}], rate, 0)


def test_rejects_negative_shipping():
    with pytest.raises(ValidationError):
        compute_order_totals([{"quantity": 1, "unit_price": 1000}], 0, -5)


@pytest.mark.parametrize("items, shipping_fee", [
    ([{"quantity": 1_000_001, "unit_price": 1}], 0),
    ([{"quantity": 1, "unit_price": 10**12}], 0),
    ([{"quantity": 1, "unit_price": 1}], 10**12),
    ([{"quantity": 1_000, "unit_price": 999_999_999}, {"quantity": 1, "unit_price": 1_000}], 0),
])
def test_rejects_amounts_beyond_limits(items, shipping_fee):
    with pytest.raises(ValidationError):
        compute_order_totals(items, 0, shipping_fee)


def test_vat_rate_basis_points():
    assert vat_rate_to_bps("0.1") == 1000
    assert vat_rate_to_bps(0.08) == 800
    assert vat_rate_to_bps(None) == 0
    assert bps_to_vat_rate(1000) == Decimal("0.1")

    with pytest.raises(ValidationError):
        vat_rate_to_bps("0.00005")


def test_verify_order_totals_detects_tampering():
    items = [SimpleNamespace(quantity=3, unit_price=10000, line_total=30000)]
    order = SimpleNamespace(
        items=items,
        vat_rate_bps=1000,
        shipping_fee=5000,
        subtotal=30000,
        vat_amount=3000,
        total_amount=38000,
    )
    assert verify_order_totals(order) is True

    order.total_amount = 40000
    assert verify_order_totals(order) is False
