# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/bizdesk/routes/products.py
"""
Product management routes.

All routes require authentication. stock_quantity is read-only here: on
create it is booked as an opening import transaction, afterwards it moves
only through /api/stock and orders.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_pagination,
    parse_bool_arg,
    coerce_int,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "category_id", "unit", "color", "size", "min_stock",
        "avg_import_price", "current_price", "is_active", "notes", "image_url",
    },
    required_on_create={"code", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params: page, limit, search (code/name), category_id,
    is_active, low_stock=true.
    """
    try:
        page, limit = parse_pagination(request.args)
        result = products_service.list_products(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            category_id=request.args.get("category_id", type=int),
            is_active=parse_bool_arg(request.args, "is_active"),
            low_stock=bool(parse_bool_arg(request.args, "low_stock")),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return jsonify(result), 200


@products_bp.get("/code/<string:code>")
@require_auth
def get_product_by_code_route(code: str):
    try:
        return products_service.get_product_by_code(code).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.post("")
@require_auth
def create_product_route():
    payload = dict(request.get_json(silent=True) or {})
    initial_stock = payload.pop("stock_quantity", None)

    try:
        initial_stock = coerce_int("stock_quantity", initial_stock) if initial_stock is not None else 0
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch, user=g.current_user, initial_stock=initial_stock)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    if "stock_quantity" in payload:
        return {"error": "stock_quantity is changed through stock transactions"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return updated, 200


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        result = products_service.delete_product(product_id=product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True, **result}, 200
