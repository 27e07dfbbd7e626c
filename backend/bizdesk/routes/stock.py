# Overview: Flask API routes for stock transactions and stock reports.

# backend/bizdesk/routes/stock.py
"""
Stock routes.

Transactions are append-only: there is no update or delete endpoint.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import stock_service
from ..services.stock_service import InsufficientStockError
from ..validation import parse_pagination, coerce_int, ValidationError, NotFoundError
from ..decorators import require_auth


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _int_field(data: dict, key: str, *, required: bool = True) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{key} is required")
        return None
    return coerce_int(key, value)


def _stock_error(e: Exception):
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    return jsonify({"error": str(e), "details": e.details}), 409


@stock_bp.get("/transactions")
@require_auth
def list_transactions_route():
    """
    Query params: page, limit, search (product code/name, reason, user),
    transaction_type, product_id, start_date, end_date.
    """
    try:
        page, limit = parse_pagination(request.args)
        result = stock_service.list_transactions(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            transaction_type=request.args.get("transaction_type"),
            product_id=request.args.get("product_id", type=int),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@stock_bp.post("/transactions")
@require_auth
def create_transaction_route():
    """
    Body: product_id, transaction_type (import|export|adjustment), quantity,
    unit_price?, reason?, notes?. For adjustments quantity is the new stock level.
    """
    data = request.get_json(silent=True) or {}
    try:
        tx = stock_service.create_transaction(
            product_id=_int_field(data, "product_id"),
            transaction_type=data.get("transaction_type"),
            quantity=_int_field(data, "quantity"),
            unit_price=_int_field(data, "unit_price", required=False),
            reason=data.get("reason"),
            notes=data.get("notes"),
            user=g.current_user,
        )
        return jsonify({"transaction": tx.to_dict()}), 201
    except (ValidationError, NotFoundError, InsufficientStockError) as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to create stock transaction")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/import")
@require_auth
def import_stock_route():
    """Body: product_code, quantity, unit_price, reason?, notes?"""
    data = request.get_json(silent=True) or {}
    try:
        tx = stock_service.import_stock(
            product_code=data.get("product_code"),
            quantity=_int_field(data, "quantity"),
            unit_price=_int_field(data, "unit_price"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            user=g.current_user,
        )
        return jsonify({"transaction": tx.to_dict()}), 201
    except (ValidationError, NotFoundError, InsufficientStockError) as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to import stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjust")
@require_auth
def adjust_stock_route():
    """Body: product_code, quantity (signed delta), reason?, notes?"""
    data = request.get_json(silent=True) or {}
    try:
        tx = stock_service.adjust_stock(
            product_code=data.get("product_code"),
            quantity=_int_field(data, "quantity"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            user=g.current_user,
        )
        return jsonify({"transaction": tx.to_dict()}), 201
    except (ValidationError, NotFoundError, InsufficientStockError) as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/products/<int:product_id>/history")
@require_auth
def product_history_route(product_id: int):
    try:
        return jsonify({"data": stock_service.product_history(product_id)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@stock_bp.get("/summary")
@require_auth
def stock_summary_route():
    return jsonify(stock_service.stock_summary()), 200


@stock_bp.get("/low-stock")
@require_auth
def low_stock_route():
    limit = min(max(request.args.get("limit", 10, type=int), 1), 100)
    return jsonify({"data": stock_service.low_stock_products(limit)}), 200
