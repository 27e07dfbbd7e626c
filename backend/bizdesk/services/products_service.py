# backend/bizdesk/services/products_service.py
"""
Products Service

stock_quantity is never written here: an opening stock on create goes
through the stock service as an "import" transaction, later changes go
through stock transactions or orders.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Category, OrderItem, StockTransaction, User
from ..validation import ConflictError, NotFoundError, ValidationError
from .pagination import paginate, like_pattern
from .stock_service import record_initial_stock

PRODUCT_MUTABLE_FIELDS = {
    "code",
    "name",
    "category_id",
    "unit",
    "color",
    "size",
    "min_stock",
    "avg_import_price",
    "current_price",
    "is_active",
    "notes",
    "image_url",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _require_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise NotFoundError("Category not found")


def _ensure_unique_code(code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(Product.code == code)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError(f"Product code already exists: {code}")


def get_product(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product not found")
    return p


def get_product_by_code(code: str) -> Product:
    p = db.session.query(Product).filter(Product.code == code).first()
    if p is None:
        raise NotFoundError(f"Product not found with code: {code}")
    return p


def list_products(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    category_id: int | None = None,
    is_active: bool | None = None,
    low_stock: bool = False,
) -> dict:
    query = db.session.query(Product)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Product.code.ilike(pattern, escape="\\"),
            Product.name.ilike(pattern, escape="\\"),
        ))
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))
    if low_stock:
        query = query.filter(Product.stock_quantity <= Product.min_stock)

    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page=page, limit=limit)


def create_product(*, patch: dict, user: User, initial_stock: int = 0) -> dict:
    """
    Create a product. A positive initial_stock is booked as an opening
    import at the given avg_import_price, in the same transaction.
    """
    if initial_stock < 0:
        raise ValidationError("stock_quantity must be >= 0")

    _ensure_unique_code(patch["code"])
    _require_category(patch.get("category_id"))

    p = Product(stock_quantity=0, min_stock=0, avg_import_price=0, current_price=0, is_active=True)
    apply_product_patch(p, patch)

    try:
        db.session.add(p)
        db.session.flush()

        if initial_stock > 0:
            opening_price = patch.get("avg_import_price") or 0
            record_initial_stock(p, quantity=initial_stock, unit_price=opening_price, user=user)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    p = get_product(product_id)

    if "code" in patch and patch["code"] != p.code:
        _ensure_unique_code(patch["code"], exclude_id=p.id)
    if "category_id" in patch:
        _require_category(patch["category_id"])

    apply_product_patch(p, patch)
    db.session.commit()
    return p.to_dict()


def delete_product(*, product_id: int) -> dict:
    """
    Remove a product.

    Products with order lines or stock history are soft-deleted
    (is_active=false) so historical references stay intact.
    """
    p = get_product(product_id)

    has_history = (
        db.session.query(OrderItem.id).filter(OrderItem.product_id == p.id).first() is not None
        or db.session.query(StockTransaction.id).filter(StockTransaction.product_id == p.id).first() is not None
    )

    if has_history:
        p.is_active = False
        db.session.commit()
        return {"deleted": False, "deactivated": True}

    db.session.delete(p)
    db.session.commit()
    return {"deleted": True, "deactivated": False}
