# Overview: Pure order pricing: line totals, subtotal, VAT and grand total.

"""
Order pricing rules (authoritative)

- Amounts are integers in whole currency units.
- line_total   = quantity * unit_price       (both must be >= 0)
- subtotal     = SUM(line_total)
- vat_amount   = subtotal * vat_rate, rounded half-up to a whole unit
- total_amount = subtotal + vat_amount + shipping_fee

vat_rate is a fraction in [0, 1] (0.1 == 10%). Orders persist it as basis
points, so a rate must be a whole number of basis points.

Nothing here touches the database: the same function prices a new order and
re-derives the totals of a stored one for auditing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from ..validation import ValidationError, coerce_int, MAX_AMOUNT, MAX_QUANTITY

BPS_PER_UNIT = 10000


@dataclass(frozen=True)
class OrderTotals:
    line_totals: tuple[int, ...]
    subtotal: int
    vat_rate: Decimal
    vat_amount: int
    shipping_fee: int
    total_amount: int

    def to_dict(self) -> dict:
        return {
            "line_totals": list(self.line_totals),
            "subtotal": self.subtotal,
            "vat_rate": float(self.vat_rate),
            "vat_amount": self.vat_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
        }


def _field(item: Any, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _non_negative_int(key: str, value: Any, upper: int) -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    number = coerce_int(key, value)
    if number < 0:
        raise ValidationError(f"{key} must be >= 0")
    if number > upper:
        raise ValidationError(f"{key} cannot exceed {upper:,}")
    return number


def parse_vat_rate(value: Any) -> Decimal:
    """Normalize a VAT rate (fraction) to Decimal, rejecting malformed input."""
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, bool):
        raise ValidationError("vat_rate must be a number")
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("vat_rate must be a number")
    if not rate.is_finite():
        raise ValidationError("vat_rate must be a finite number")
    if rate < 0 or rate > 1:
        raise ValidationError("vat_rate must be a fraction between 0 and 1 (e.g. 0.1 for 10%)")
    return rate


def vat_rate_to_bps(value: Any) -> int:
    rate = parse_vat_rate(value)
    bps = rate * BPS_PER_UNIT
    if bps != bps.to_integral_value():
        raise ValidationError("vat_rate cannot be finer than 0.0001 (one basis point)")
    return int(bps)


def bps_to_vat_rate(bps: int) -> Decimal:
    return Decimal(bps) / BPS_PER_UNIT


def round_currency(amount: Decimal) -> int:
    """Nearest whole currency unit, halves rounded away from zero."""
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_order_totals(items: Iterable[Any], vat_rate: Any, shipping_fee: Any) -> OrderTotals:
    """
    Price a list of line items.

    items: dicts or objects exposing `quantity` and `unit_price`.
    Raises ValidationError for negative/non-numeric values, a malformed rate,
    or amounts and quantities beyond MAX_AMOUNT / MAX_QUANTITY.
    """
    rate = parse_vat_rate(vat_rate)
    fee = _non_negative_int("shipping_fee", 0 if shipping_fee is None else shipping_fee, MAX_AMOUNT)

    line_totals = []
    for i, item in enumerate(items, start=1):
        quantity = _non_negative_int(f"items[{i}].quantity", _field(item, "quantity"), MAX_QUANTITY)
        unit_price = _non_negative_int(f"items[{i}].unit_price", _field(item, "unit_price"), MAX_AMOUNT)
        line_totals.append(quantity * unit_price)

    subtotal = sum(line_totals)
    vat_amount = round_currency(Decimal(subtotal) * rate)
    total_amount = subtotal + vat_amount + fee
    if total_amount > MAX_AMOUNT:
        raise ValidationError(f"order total cannot exceed {MAX_AMOUNT:,}")

    return OrderTotals(
        line_totals=tuple(line_totals),
        subtotal=subtotal,
        vat_rate=rate,
        vat_amount=vat_amount,
        shipping_fee=fee,
        total_amount=total_amount,
    )


def recompute_order_totals(order) -> OrderTotals:
    """Re-derive totals from a persisted order's own line items."""
    return compute_order_totals(order.items, bps_to_vat_rate(order.vat_rate_bps), order.shipping_fee)


def verify_order_totals(order) -> bool:
    """True when the stored totals equal a fresh recomputation."""
    totals = recompute_order_totals(order)
    stored_lines = tuple(item.line_total for item in order.items)
    return (
        stored_lines == totals.line_totals
        and order.subtotal == totals.subtotal
        and order.vat_amount == totals.vat_amount
        and order.total_amount == totals.total_amount
    )
