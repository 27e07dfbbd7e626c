# backend/bizdesk/services/category_service.py
"""
Category Service

Names are unique case-insensitively. A category that still has products
cannot be deleted.
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Category, Product
from ..validation import ConflictError, NotFoundError
from .pagination import paginate, like_pattern

CATEGORY_MUTABLE_FIELDS = {"name", "description", "is_active"}


def _product_counts(category_ids) -> dict[int, int]:
    if not category_ids:
        return {}
    rows = (
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.category_id.in_(category_ids))
        .group_by(Product.category_id)
        .all()
    )
    return {cid: int(count) for cid, count in rows}


def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError(f'Category "{name}" already exists')


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def category_detail(category_id: int) -> dict:
    category = get_category(category_id)
    return category.to_dict(product_count=_product_counts([category.id]).get(category.id, 0))


def list_categories(*, page: int = 1, limit: int = 10, search: str | None = None, is_active: bool | None = None) -> dict:
    query = db.session.query(Category)
    if search:
        query = query.filter(Category.name.ilike(like_pattern(search), escape="\\"))
    if is_active is not None:
        query = query.filter(Category.is_active.is_(is_active))
    query = query.order_by(Category.name.asc(), Category.id.asc())

    result = paginate(query, page=page, limit=limit, serialize=lambda c: c)
    counts = _product_counts([c.id for c in result["data"]])
    result["data"] = [c.to_dict(product_count=counts.get(c.id, 0)) for c in result["data"]]
    return result


def active_categories() -> list[dict]:
    rows = db.session.query(Category).filter(Category.is_active.is_(True)).order_by(Category.name.asc()).all()
    counts = _product_counts([c.id for c in rows])
    return [c.to_dict(product_count=counts.get(c.id, 0)) for c in rows]


def create_category(*, patch: dict) -> dict:
    _ensure_unique_name(patch["name"])

    category = Category()
    for key, value in patch.items():
        if key in CATEGORY_MUTABLE_FIELDS:
            setattr(category, key, value)

    db.session.add(category)
    db.session.commit()
    return category.to_dict(product_count=0)


def update_category(*, category_id: int, patch: dict) -> dict:
    category = get_category(category_id)

    if "name" in patch and patch["name"] != category.name:
        _ensure_unique_name(patch["name"], exclude_id=category.id)

    for key, value in patch.items():
        if key in CATEGORY_MUTABLE_FIELDS:
            setattr(category, key, value)

    db.session.commit()
    return category.to_dict(product_count=_product_counts([category.id]).get(category.id, 0))


def delete_category(*, category_id: int) -> None:
    category = get_category(category_id)

    count = _product_counts([category.id]).get(category.id, 0)
    if count > 0:
        raise ConflictError(f'Cannot delete category "{category.name}": {count} product(s) still use it')

    db.session.delete(category)
    db.session.commit()
