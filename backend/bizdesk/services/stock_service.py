# Overview: Service-layer operations for stock; owns every write to Product.stock_quantity.

# backend/bizdesk/services/stock_service.py

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, StockTransaction, Order, User
from ..validation import ValidationError, NotFoundError, MAX_AMOUNT, MAX_QUANTITY
from bizdesk.time_utils import utcnow, local_day_range
from .concurrency import lock_for_update, begin_write, run_with_retry
from .pagination import paginate, like_pattern
from .pricing import round_currency
"""
Stock Invariants (authoritative)

- Product.stock_quantity changes only here, and every change appends exactly
  one StockTransaction in the same DB transaction.
- StockTransaction rows are append-only: stock_after == stock_before + quantity.
- quantity is signed: imports > 0, exports < 0, adjustments either way.
- Under STOCK_POLICY="strict" stock never goes below zero.
- Order-driven functions (apply/reverse) never commit; the order service owns
  the transaction so the order and all of its stock movements land together.

Concurrency:
- Products are locked in ascending id order before reading stock
  (SELECT ... FOR UPDATE; BEGIN IMMEDIATE on SQLite).
- Product.version_id rejects a write based on a stale read (StaleDataError),
  which run_with_retry turns into a fresh attempt.
"""

STOCK_POLICIES = ("strict", "allow_negative")


class InsufficientStockError(Exception):
    """Raised when an export would take stock below zero."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def get_stock_policy() -> str:
    policy = current_app.config.get("STOCK_POLICY", "strict")
    if policy not in STOCK_POLICIES:
        raise ValueError(f"STOCK_POLICY must be one of {', '.join(STOCK_POLICIES)}")
    return policy


def _lock_products(product_ids) -> dict[int, Product]:
    ids = sorted(set(product_ids))
    query = (
        db.session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id.asc())
        .populate_existing()
    )
    products = {p.id: p for p in lock_for_update(query).all()}
    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise NotFoundError(f"Product not found: {', '.join(str(m) for m in missing)}")
    return products


def _get_product_by_code(product_code: str) -> Product:
    if not product_code or not str(product_code).strip():
        raise ValidationError("product_code is required")
    query = db.session.query(Product).filter(Product.code == str(product_code).strip())
    product = lock_for_update(query).first()
    if product is None:
        raise NotFoundError(f"Product not found with code: {product_code}")
    return product


def _record_transaction(
    product: Product,
    *,
    transaction_type: str,
    quantity: int,
    user: User,
    unit_price: int = 0,
    total_value: int = 0,
    order_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> StockTransaction:
    """Move product stock by `quantity` and append the matching transaction row."""
    stock_before = product.stock_quantity
    stock_after = stock_before + quantity

    product.stock_quantity = stock_after

    tx = StockTransaction(
        product_id=product.id,
        product_code=product.code,
        product_name=product.name,
        transaction_type=transaction_type,
        quantity=quantity,
        unit_price=unit_price,
        total_value=total_value,
        order_id=order_id,
        user_id=user.id,
        user_name=user.full_name,
        reason=reason,
        notes=notes,
        stock_before=stock_before,
        stock_after=stock_after,
        transaction_date=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _requested_by_product(order: Order) -> "OrderedDict[int, int]":
    totals: OrderedDict[int, int] = OrderedDict()
    for item in order.items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def apply_stock_for_order(order: Order, *, user: User) -> list[StockTransaction]:
    """
    Export stock for every line of a newly created active order.

    Quantities are summed per product before checking, so two lines of the
    same product cannot each pass the check on their own.

    Raises InsufficientStockError (strict policy) before any stock is touched.
    Must run inside the caller's transaction; does not commit.
    """
    if order.status != "active":
        raise ValidationError("Stock is only exported for active orders")

    requested = _requested_by_product(order)
    products = _lock_products(requested.keys())
    policy = get_stock_policy()

    insufficient = []
    for product_id, qty in requested.items():
        on_hand = products[product_id].stock_quantity
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "product_code": products[product_id].code,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        if policy == "strict":
            raise InsufficientStockError(
                "Insufficient stock to create order",
                details={"items": insufficient},
            )
        for row in insufficient:
            current_app.logger.warning(
                "Order %s drives product %s below zero (on hand %s, requested %s)",
                order.order_number,
                row["product_code"],
                row["on_hand"],
                row["requested_quantity"],
            )

    transactions = []
    for item in order.items:
        tx = _record_transaction(
            products[item.product_id],
            transaction_type="export",
            quantity=-item.quantity,
            unit_price=item.unit_price,
            total_value=item.line_total,
            order_id=order.id,
            user=user,
            reason=f"Export for order {order.order_number}",
        )
        transactions.append(tx)
    return transactions


def reverse_stock_for_order(order: Order, *, user: User) -> list[StockTransaction]:
    """
    Return every line's quantity to stock when an order is cancelled.

    Compensating "import" rows are appended; the original exports stay as-is.
    Must run inside the caller's transaction; does not commit.
    """
    requested = _requested_by_product(order)
    products = _lock_products(requested.keys())

    transactions = []
    for item in order.items:
        tx = _record_transaction(
            products[item.product_id],
            transaction_type="import",
            quantity=item.quantity,
            unit_price=0,
            total_value=0,
            order_id=order.id,
            user=user,
            reason=f"Returned to stock: order {order.order_number} cancelled",
        )
        transactions.append(tx)
    return transactions


def _weighted_avg_price(product: Product, quantity: int, unit_price: int) -> int:
    stock_before = product.stock_quantity
    stock_after = stock_before + quantity
    if stock_before <= 0 or stock_after <= 0:
        return unit_price
    total = Decimal(stock_before * product.avg_import_price + quantity * unit_price)
    return round_currency(total / stock_after)


def _positive_quantity(quantity: int) -> int:
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY:,}")
    return quantity


def _import_locked(
    product: Product,
    *,
    quantity: int,
    unit_price: int | None,
    user: User,
    reason: str | None = None,
    notes: str | None = None,
) -> StockTransaction:
    """An import without a unit price moves stock but leaves the average import price alone."""
    if unit_price is not None:
        if unit_price < 0 or unit_price > MAX_AMOUNT:
            raise ValidationError(f"unit_price must be between 0 and {MAX_AMOUNT:,}")
        product.avg_import_price = _weighted_avg_price(product, quantity, unit_price)
    return _record_transaction(
        product,
        transaction_type="import",
        quantity=quantity,
        unit_price=unit_price or 0,
        total_value=quantity * (unit_price or 0),
        user=user,
        reason=reason or "Stock import",
        notes=notes,
    )


def import_stock(
    *,
    product_code: str,
    quantity: int,
    unit_price: int,
    user: User,
    reason: str | None = None,
    notes: str | None = None,
) -> StockTransaction:
    """
    Receive goods into stock and update the weighted average import price:
        avg = unit_price                                      if stock_before == 0
        avg = (stock_before * avg + qty * unit_price) / stock_after   otherwise
    """
    _positive_quantity(quantity)
    if unit_price is None:
        raise ValidationError("unit_price is required")

    def _op():
        begin_write()
        product = _get_product_by_code(product_code)
        tx = _import_locked(product, quantity=quantity, unit_price=unit_price, user=user, reason=reason, notes=notes)
        db.session.commit()
        return tx

    return run_with_retry(_op)


def adjust_stock(
    *,
    product_code: str,
    quantity: int,
    user: User,
    reason: str | None = None,
    notes: str | None = None,
) -> StockTransaction:
    """Apply a signed correction. The result may not be negative."""
    if quantity is None or quantity == 0:
        raise ValidationError("quantity must be non-zero for an adjustment")
    _positive_quantity(abs(quantity))

    def _op():
        begin_write()
        product = _get_product_by_code(product_code)
        if product.stock_quantity + quantity < 0:
            raise InsufficientStockError(
                "Adjustment would make stock negative",
                details={
                    "product_id": product.id,
                    "requested_quantity": -quantity,
                    "on_hand": product.stock_quantity,
                },
            )
        tx = _record_transaction(
            product,
            transaction_type="adjustment",
            quantity=quantity,
            user=user,
            reason=reason or "Stock adjustment",
            notes=notes,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


def create_transaction(
    *,
    product_id: int,
    transaction_type: str,
    quantity: int,
    user: User,
    unit_price: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> StockTransaction:
    """
    Generic manual stock entry.

    - import:      quantity > 0 is added; unit_price, when given, updates the
                   average import price
    - export:      quantity is taken out (sign is forced negative)
    - adjustment:  quantity is the NEW absolute stock level; the stored
                   quantity is the resulting delta
    """
    if transaction_type not in ("import", "export", "adjustment"):
        raise ValidationError("transaction_type must be import, export or adjustment")
    if quantity is None:
        raise ValidationError("quantity is required")
    if transaction_type == "adjustment":
        if quantity < 0:
            raise ValidationError("new stock level must be >= 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"new stock level cannot exceed {MAX_QUANTITY:,}")
    else:
        _positive_quantity(abs(quantity))

    def _op():
        begin_write()
        product = _lock_products([product_id])[product_id]

        if transaction_type == "import":
            tx = _import_locked(
                product,
                quantity=abs(quantity),
                unit_price=unit_price,
                user=user,
                reason=reason,
                notes=notes,
            )
        elif transaction_type == "export":
            delta = -abs(quantity)
            if product.stock_quantity + delta < 0:
                raise InsufficientStockError(
                    "Insufficient stock for export",
                    details={
                        "product_id": product.id,
                        "requested_quantity": abs(quantity),
                        "on_hand": product.stock_quantity,
                    },
                )
            price = unit_price if unit_price is not None else product.current_price
            if not 0 <= price <= MAX_AMOUNT:
                raise ValidationError(f"unit_price must be between 0 and {MAX_AMOUNT:,}")
            tx = _record_transaction(
                product,
                transaction_type="export",
                quantity=delta,
                unit_price=price,
                total_value=abs(delta) * price,
                user=user,
                reason=reason or "Stock export",
                notes=notes,
            )
        else:
            delta = quantity - product.stock_quantity
            if delta == 0:
                raise ValidationError("new stock level equals current stock")
            tx = _record_transaction(
                product,
                transaction_type="adjustment",
                quantity=delta,
                user=user,
                reason=reason or "Stock count adjustment",
                notes=notes,
            )

        db.session.commit()
        return tx

    return run_with_retry(_op)


def record_initial_stock(product: Product, *, quantity: int, unit_price: int, user: User) -> StockTransaction:
    """Opening balance for a newly created product; caller commits."""
    return _import_locked(
        product,
        quantity=_positive_quantity(quantity),
        unit_price=unit_price,
        user=user,
        reason="Opening stock",
    )


def list_transactions(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    transaction_type: str | None = None,
    product_id: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    """Paginated stock report, newest first. Day bounds are inclusive in REPORT_TIMEZONE."""
    query = db.session.query(StockTransaction)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            StockTransaction.product_code.ilike(pattern, escape="\\"),
            StockTransaction.product_name.ilike(pattern, escape="\\"),
            StockTransaction.reason.ilike(pattern, escape="\\"),
            StockTransaction.user_name.ilike(pattern, escape="\\"),
        ))

    if transaction_type:
        if transaction_type not in ("import", "export", "adjustment"):
            raise ValidationError("transaction_type must be import, export or adjustment")
        query = query.filter(StockTransaction.transaction_type == transaction_type)

    if product_id:
        query = query.filter(StockTransaction.product_id == product_id)

    try:
        start_dt, end_dt = local_day_range(start_date, end_date, current_app.config["REPORT_TIMEZONE"])
    except ValueError:
        raise ValidationError("start_date/end_date must be YYYY-MM-DD or ISO-8601")
    if start_dt:
        query = query.filter(StockTransaction.transaction_date >= start_dt)
    if end_dt:
        query = query.filter(StockTransaction.transaction_date < end_dt)

    query = query.order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc())
    return paginate(query, page=page, limit=limit)


def product_history(product_id: int) -> list[dict]:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found")
    rows = (
        db.session.query(StockTransaction)
        .filter_by(product_id=product_id)
        .order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc())
        .all()
    )
    return [row.to_dict() for row in rows]


def stock_summary() -> dict:
    total_products = db.session.query(func.count(Product.id)).scalar() or 0
    low_stock = (
        db.session.query(func.count(Product.id))
        .filter(Product.stock_quantity <= Product.min_stock)
        .scalar()
        or 0
    )
    total_value = (
        db.session.query(func.coalesce(func.sum(Product.stock_quantity * Product.avg_import_price), 0))
        .scalar()
    )
    return {
        "total_products": int(total_products),
        "low_stock_products": int(low_stock),
        "total_stock_value": int(total_value or 0),
    }


def low_stock_products(limit: int = 10) -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_quantity <= Product.min_stock)
        .order_by((Product.stock_quantity - Product.min_stock).asc(), Product.name.asc())
        .limit(limit)
        .all()
    )
    return [p.to_dict() for p in rows]
