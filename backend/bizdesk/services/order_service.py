# Overview: Service-layer operations for orders: creation, cancellation, payment and listing.

"""
Order lifecycle

- create_order prices the lines, allocates an order number, exports stock and
  bumps customer/agent aggregates in ONE transaction. Any failure (unknown
  product, insufficient stock, ...) rolls everything back.
- status moves only active -> cancelled. cancel_order returns stock through
  compensating import transactions and reverses the aggregates.
- Line items are immutable once the order exists; VAT rate and shipping fee
  may change and the totals are re-derived from the stored lines.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import Order, OrderItem, Product, Customer, Agent, User, PAYMENT_STATUSES, PAYMENT_METHODS
from ..validation import ValidationError, NotFoundError, coerce_int, MAX_AMOUNT, MAX_QUANTITY
from bizdesk.time_utils import utcnow, parse_iso_datetime, local_day_range, month_bounds, local_now
from .concurrency import lock_for_update, begin_write, run_with_retry
from .document_service import next_document_number
from .pagination import paginate, like_pattern
from .pricing import compute_order_totals, vat_rate_to_bps, bps_to_vat_rate
from .stock_service import apply_stock_for_order, reverse_stock_for_order


class OrderError(Exception):
    """Raised for order lifecycle violations."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


UPDATABLE_FIELDS = {
    "payment_status",
    "payment_method",
    "notes",
    "delivery_date",
    "delivery_address",
    "customer_name",
    "customer_phone",
    "vat_rate",
    "shipping_fee",
    "status",
}


def _optional_id(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value in (None, ""):
        return None
    return coerce_int(key, value)


def _optional_text(payload: dict, key: str, max_len: int) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    text_value = str(value).strip()
    if len(text_value) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}")
    return text_value or None


def _check_payment_status(value) -> str:
    if value not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
    return value


def _check_payment_method(value) -> str | None:
    if value in (None, ""):
        return None
    if value not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    return value


def _parse_delivery_date(value):
    if value in (None, ""):
        return None
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("delivery_date must be an ISO-8601 date or datetime")
    return parsed


def _parse_items(raw_items) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderError("Order must contain at least one item")

    items = []
    for i, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        if raw.get("product_id") in (None, ""):
            raise ValidationError(f"items[{i}].product_id is required")
        product_id = coerce_int(f"items[{i}].product_id", raw["product_id"])

        if raw.get("quantity") in (None, ""):
            raise ValidationError(f"items[{i}].quantity is required")
        quantity = coerce_int(f"items[{i}].quantity", raw["quantity"])
        if quantity <= 0:
            raise ValidationError(f"items[{i}].quantity must be > 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"items[{i}].quantity cannot exceed {MAX_QUANTITY:,}")

        unit_price = None
        if raw.get("unit_price") not in (None, ""):
            unit_price = coerce_int(f"items[{i}].unit_price", raw["unit_price"])
            if unit_price < 0:
                raise ValidationError(f"items[{i}].unit_price must be >= 0")
            if unit_price > MAX_AMOUNT:
                raise ValidationError(f"items[{i}].unit_price cannot exceed {MAX_AMOUNT:,}")

        items.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price": unit_price,
            "notes": _optional_text(raw, "notes", 500),
        })
    return items


def _apply_payment_amounts(order: Order) -> None:
    if order.payment_status == "completed":
        order.paid_amount = order.total_amount
        order.debt_amount = 0
    elif order.payment_status == "debt":
        order.paid_amount = 0
        order.debt_amount = order.total_amount
    else:
        order.paid_amount = 0
        order.debt_amount = 0


def _bump_aggregates(order: Order, *, orders_delta: int, amount_delta: int) -> None:
    for model, ref_id in ((Customer, order.customer_id), (Agent, order.agent_id)):
        if not ref_id:
            continue
        db.session.execute(
            update(model)
            .where(model.id == ref_id)
            .values(
                total_orders=model.total_orders + orders_delta,
                total_amount=model.total_amount + amount_delta,
            )
        )


def _load_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def create_order(payload: dict, *, user: User) -> Order:
    """
    Create an active order and export its stock.

    payload: items[{product_id, quantity, unit_price?, notes?}], customer_id?,
    agent_id?, customer_name?, customer_phone?, vat_rate?, shipping_fee?,
    payment_status?, payment_method?, delivery_date?, delivery_address?, notes?
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = _parse_items(payload.get("items"))
    customer_id = _optional_id(payload, "customer_id")
    agent_id = _optional_id(payload, "agent_id")

    raw_vat = payload.get("vat_rate")
    if raw_vat is None:
        raw_vat = current_app.config.get("DEFAULT_VAT_RATE", "0")
    vat_rate_bps = vat_rate_to_bps(raw_vat)

    shipping_fee = coerce_int("shipping_fee", payload.get("shipping_fee") or 0)
    if not 0 <= shipping_fee <= MAX_AMOUNT:
        raise ValidationError(f"shipping_fee must be between 0 and {MAX_AMOUNT:,}")
    payment_status = _check_payment_status(payload.get("payment_status") or "pending")
    payment_method = _check_payment_method(payload.get("payment_method"))
    delivery_date = _parse_delivery_date(payload.get("delivery_date"))
    delivery_address = _optional_text(payload, "delivery_address", 500)
    notes = _optional_text(payload, "notes", 1000)

    def _op():
        begin_write()

        product_ids = sorted({item["product_id"] for item in items})
        products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()}
        for pid in product_ids:
            product = products.get(pid)
            if product is None:
                raise NotFoundError(f"Product not found: {pid}")
            if not product.is_active:
                raise OrderError(f"Product is inactive: {product.code}")

        priced = []
        for item in items:
            product = products[item["product_id"]]
            unit_price = item["unit_price"] if item["unit_price"] is not None else product.current_price
            priced.append({**item, "unit_price": unit_price})

        customer = None
        if customer_id is not None:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise NotFoundError("Customer not found")
        agent = None
        if agent_id is not None:
            agent = db.session.get(Agent, agent_id)
            if agent is None:
                raise NotFoundError("Agent not found")

        totals = compute_order_totals(priced, bps_to_vat_rate(vat_rate_bps), shipping_fee)

        order = Order(
            order_number=next_document_number(document_type="ORDER", prefix="DH"),
            customer_id=customer.id if customer else None,
            agent_id=agent.id if agent else None,
            customer_name=_optional_text(payload, "customer_name", 100) or (customer.name if customer else None),
            customer_phone=_optional_text(payload, "customer_phone", 20) or (customer.phone if customer else None),
            agent_name=agent.name if agent else None,
            subtotal=totals.subtotal,
            vat_rate_bps=vat_rate_bps,
            vat_amount=totals.vat_amount,
            shipping_fee=totals.shipping_fee,
            total_amount=totals.total_amount,
            payment_status=payment_status,
            payment_method=payment_method,
            delivery_date=delivery_date,
            delivery_address=delivery_address,
            notes=notes,
            status="active",
            created_by_user_id=user.id,
            created_at=utcnow(),
        )
        _apply_payment_amounts(order)

        for position, (item, line_total) in enumerate(zip(priced, totals.line_totals), start=1):
            product = products[item["product_id"]]
            order.items.append(OrderItem(
                product_id=product.id,
                position=position,
                product_code=product.code,
                product_name=product.name,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=line_total,
                notes=item["notes"],
            ))

        db.session.add(order)
        db.session.flush()

        apply_stock_for_order(order, user=user)
        _bump_aggregates(order, orders_delta=1, amount_delta=order.total_amount)

        db.session.commit()
        current_app.logger.info("Order %s created by %s (total %s)", order.order_number, user.username, order.total_amount)
        return order

    return run_with_retry(_op)


def _cancel_locked(order: Order, *, user: User) -> Order:
    if order.status == "cancelled":
        raise OrderError("Order is already cancelled")

    reverse_stock_for_order(order, user=user)
    _bump_aggregates(order, orders_delta=-1, amount_delta=-order.total_amount)

    order.status = "cancelled"
    order.cancelled_at = utcnow()
    order.cancelled_by_user_id = user.id
    order.updated_by_user_id = user.id
    return order


def cancel_order(order_id: int, *, user: User) -> Order:
    """active -> cancelled; returns stock and reverses customer/agent aggregates."""
    def _op():
        begin_write()
        order = _load_order_locked(order_id)
        _cancel_locked(order, user=user)
        db.session.commit()
        current_app.logger.info("Order %s cancelled by %s", order.order_number, user.username)
        return order

    return run_with_retry(_op)


def update_order(order_id: int, patch: dict, *, user: User) -> Order:
    """
    Patch an order's payment/delivery fields, VAT rate or shipping fee.

    Totals are recomputed from the stored lines and the aggregate totals of the
    customer/agent follow the change. status="cancelled" cancels the order.
    """
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    if "items" in patch:
        raise OrderError("Order items cannot be changed after creation; cancel and re-create the order")
    for key in patch:
        if key not in UPDATABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

    new_status = patch.get("status")
    if new_status is not None and new_status not in ("active", "cancelled"):
        raise ValidationError("status must be active or cancelled")

    def _op():
        begin_write()
        order = _load_order_locked(order_id)

        if order.status == "cancelled":
            if new_status == "active":
                raise OrderError("A cancelled order cannot be reactivated")
            money_keys = {"vat_rate", "shipping_fee", "payment_status"} & set(patch)
            if money_keys:
                raise OrderError("Cannot change amounts or payment of a cancelled order")

        if "payment_status" in patch:
            order.payment_status = _check_payment_status(patch["payment_status"])
        if "payment_method" in patch:
            order.payment_method = _check_payment_method(patch["payment_method"])
        if "notes" in patch:
            order.notes = _optional_text(patch, "notes", 1000)
        if "delivery_date" in patch:
            order.delivery_date = _parse_delivery_date(patch["delivery_date"])
        if "delivery_address" in patch:
            order.delivery_address = _optional_text(patch, "delivery_address", 500)
        if "customer_name" in patch:
            order.customer_name = _optional_text(patch, "customer_name", 100)
        if "customer_phone" in patch:
            order.customer_phone = _optional_text(patch, "customer_phone", 20)

        if "vat_rate" in patch or "shipping_fee" in patch:
            vat_rate_bps = vat_rate_to_bps(patch["vat_rate"]) if "vat_rate" in patch else order.vat_rate_bps
            shipping_fee = patch["shipping_fee"] if "shipping_fee" in patch else order.shipping_fee
            totals = compute_order_totals(order.items, bps_to_vat_rate(vat_rate_bps), shipping_fee)

            old_total = order.total_amount
            order.vat_rate_bps = vat_rate_bps
            order.subtotal = totals.subtotal
            order.vat_amount = totals.vat_amount
            order.shipping_fee = totals.shipping_fee
            order.total_amount = totals.total_amount
            if order.status == "active" and order.total_amount != old_total:
                _bump_aggregates(order, orders_delta=0, amount_delta=order.total_amount - old_total)

        _apply_payment_amounts(order)
        order.updated_by_user_id = user.id

        if new_status == "cancelled" and order.status == "active":
            _cancel_locked(order, user=user)

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_payment_status(order_id: int, payment_status: str, *, user: User | None = None) -> Order:
    """
    Move an order between pending / completed / debt.

    completed -> paid_amount = total_amount
    debt      -> debt_amount = total_amount
    pending   -> both zero
    """
    _check_payment_status(payment_status)

    def _op():
        begin_write()
        order = _load_order_locked(order_id)
        if order.status == "cancelled":
            raise OrderError("Cannot change payment of a cancelled order")
        order.payment_status = payment_status
        _apply_payment_amounts(order)
        if user is not None:
            order.updated_by_user_id = user.id
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _date_filtered(query, start_date: str | None, end_date: str | None):
    try:
        start_dt, end_dt = local_day_range(start_date, end_date, current_app.config["REPORT_TIMEZONE"])
    except ValueError:
        raise ValidationError("start_date/end_date must be YYYY-MM-DD or ISO-8601")
    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at < end_dt)
    return query


def list_orders(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    payment_status: str | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    agent_id: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    query = db.session.query(Order)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Order.order_number.ilike(pattern, escape="\\"),
            Order.customer_name.ilike(pattern, escape="\\"),
            Order.agent_name.ilike(pattern, escape="\\"),
            Order.notes.ilike(pattern, escape="\\"),
        ))
    if payment_status:
        query = query.filter(Order.payment_status == _check_payment_status(payment_status))
    if status:
        if status not in ("active", "cancelled"):
            raise ValidationError("status must be active or cancelled")
        query = query.filter(Order.status == status)
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)
    if agent_id:
        query = query.filter(Order.agent_id == agent_id)

    query = _date_filtered(query, start_date, end_date)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(query, page=page, limit=limit, serialize=lambda o: o.to_dict(include_items=False))


def orders_for_customer(customer_id: int) -> list[Order]:
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found")
    return (
        db.session.query(Order)
        .filter_by(customer_id=customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def orders_for_agent(agent_id: int) -> list[Order]:
    if db.session.get(Agent, agent_id) is None:
        raise NotFoundError("Agent not found")
    return (
        db.session.query(Order)
        .filter_by(agent_id=agent_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def pending_payment_orders() -> list[Order]:
    """Active orders still awaiting payment (pending or debt), oldest first."""
    return (
        db.session.query(Order)
        .filter(Order.status == "active", Order.payment_status.in_(("pending", "debt")))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )


def order_stats(start_date: str | None = None, end_date: str | None = None) -> dict:
    query = _date_filtered(db.session.query(Order).filter(Order.status == "active"), start_date, end_date)

    row = query.with_entities(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_amount), 0),
        func.coalesce(func.sum(Order.paid_amount), 0),
        func.coalesce(func.sum(Order.debt_amount), 0),
    ).one()

    by_status = dict(
        query.with_entities(Order.payment_status, func.count(Order.id))
        .group_by(Order.payment_status)
        .all()
    )

    return {
        "total_orders": int(row[0]),
        "total_revenue": int(row[1]),
        "paid_amount": int(row[2]),
        "debt_amount": int(row[3]),
        "pending_orders": int(by_status.get("pending", 0)),
        "completed_orders": int(by_status.get("completed", 0)),
        "debt_orders": int(by_status.get("debt", 0)),
    }


def monthly_revenue(year: int | None = None) -> list[dict]:
    """Revenue and order count of active orders for each month of `year` (reference zone)."""
    tz_name = current_app.config["REPORT_TIMEZONE"]
    if year is None:
        year = local_now(tz_name).year

    series = []
    for month in range(1, 13):
        start, end = month_bounds(year, month, tz_name)
        count, revenue = (
            db.session.query(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .filter(Order.status == "active", Order.created_at >= start, Order.created_at < end)
            .one()
        )
        series.append({"month": month, "orders": int(count), "revenue": int(revenue)})
    return series
