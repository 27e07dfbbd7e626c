# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/bizdesk/routes/invoices.py
"""Invoice API routes: issue from an order, list, look up, print data and print marking."""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import invoice_service
from ..services.invoice_service import InvoiceError
from ..validation import parse_pagination, parse_bool_arg, ValidationError, ConflictError, NotFoundError
from ..decorators import require_auth


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """Body: order_number, notes?"""
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.create_from_order(
            order_number=data.get("order_number"),
            notes=data.get("notes"),
            user=g.current_user,
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvoiceError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """Query params: page, limit, search, payment_status, is_printed, start_date, end_date."""
    try:
        page, limit = parse_pagination(request.args)
        result = invoice_service.list_invoices(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            payment_status=request.args.get("payment_status"),
            is_printed=parse_bool_arg(request.args, "is_printed"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@invoices_bp.get("/stats")
@require_auth
def invoice_stats_route():
    try:
        stats = invoice_service.invoice_stats(request.args.get("start_date"), request.args.get("end_date"))
        return jsonify(stats), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@invoices_bp.get("/unprinted")
@require_auth
def unprinted_invoices_route():
    invoices = invoice_service.unprinted_invoices()
    return jsonify({"data": [i.to_dict() for i in invoices]}), 200


@invoices_bp.get("/order/<order_number>")
@require_auth
def invoice_by_order_route(order_number: str):
    try:
        invoice = invoice_service.get_by_order_number(order_number)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200


@invoices_bp.get("/<int:invoice_id>/print-data")
@require_auth
def print_data_route(invoice_id: int):
    try:
        return jsonify(invoice_service.print_payload(invoice_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@invoices_bp.patch("/<int:invoice_id>/mark-printed")
@require_auth
def mark_printed_route(invoice_id: int):
    try:
        invoice = invoice_service.mark_printed(invoice_id, user=g.current_user)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
