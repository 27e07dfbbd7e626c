# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/bizdesk/routes/orders.py
"""Order API routes: create, cancel, payment status, listing and per-order views."""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.order_service import OrderError
from ..services.stock_service import InsufficientStockError
from ..services.pricing import verify_order_totals
from ..validation import parse_pagination, ValidationError, NotFoundError
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create an active order. Stock is exported for every line in the same
    transaction; nothing is saved when any line fails.
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(data, user=g.current_user)
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params: page, limit, search (order number/customer/agent/notes),
    payment_status, status, customer_id, agent_id, start_date, end_date
    (YYYY-MM-DD, inclusive, reference timezone).
    """
    try:
        page, limit = parse_pagination(request.args)
        result = order_service.list_orders(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            payment_status=request.args.get("payment_status"),
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            agent_id=request.args.get("agent_id", type=int),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@orders_bp.get("/stats")
@require_auth
def order_stats_route():
    try:
        stats = order_service.order_stats(request.args.get("start_date"), request.args.get("end_date"))
        return jsonify(stats), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@orders_bp.get("/monthly-revenue")
@require_auth
def monthly_revenue_route():
    year = request.args.get("year", type=int)
    return jsonify({"data": order_service.monthly_revenue(year)}), 200


@orders_bp.get("/pending-payment")
@require_auth
def pending_payment_route():
    orders = order_service.pending_payment_orders()
    return jsonify({"data": [o.to_dict(include_items=False) for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    data = order.to_dict()
    data["totals_verified"] = verify_order_totals(order)
    return jsonify({"order": data}), 200


@orders_bp.put("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order(order_id, data, user=g.current_user)
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/payment-status")
@require_auth
def update_payment_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    payment_status = data.get("payment_status")
    if not payment_status:
        return jsonify({"error": "payment_status required"}), 400

    try:
        order = order_service.update_payment_status(order_id, payment_status, user=g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Cancel an active order and return its stock."""
    try:
        order = order_service.cancel_order(order_id, user=g.current_user)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
