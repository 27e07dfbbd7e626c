# Overview: Flask API routes for dashboard statistics and reports.

# backend/bizdesk/routes/statistics.py
"""
Statistics routes.

Period filters: ?period=day|week|month|quarter|year or explicit
?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD (inclusive, reference timezone).
Only active orders are counted.
"""

from flask import Blueprint, request, jsonify

from ..services import statistics_service
from ..validation import ValidationError
from ..decorators import require_auth


statistics_bp = Blueprint("statistics", __name__, url_prefix="/api/statistics")


def _period_args() -> dict:
    return {
        "period": request.args.get("period"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }


def _limit(default: int) -> int:
    return min(max(request.args.get("limit", default, type=int), 1), 100)


@statistics_bp.get("/dashboard")
@require_auth
def dashboard_route():
    """Current vs previous calendar month cards."""
    return jsonify(statistics_service.dashboard_cards()), 200


@statistics_bp.get("/summary")
@require_auth
def summary_route():
    try:
        return jsonify(statistics_service.statistics_summary(**_period_args())), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/overview")
@require_auth
def overview_route():
    try:
        return jsonify(statistics_service.overview(**_period_args())), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/revenue")
@require_auth
def revenue_route():
    try:
        rows = statistics_service.revenue_by_period(
            request.args.get("period", "month"),
            request.args.get("year", type=int),
        )
        return jsonify({"data": rows}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/top-customers")
@require_auth
def top_customers_route():
    try:
        start, end = statistics_service.resolve_period(**_period_args())
        return jsonify({"data": statistics_service.top_customers(_limit(10), start=start, end=end)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/top-agents")
@require_auth
def top_agents_route():
    try:
        start, end = statistics_service.resolve_period(**_period_args())
        return jsonify({"data": statistics_service.top_agents(_limit(10), start=start, end=end)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/top-products")
@require_auth
def top_products_route():
    try:
        start, end = statistics_service.resolve_period(**_period_args())
        return jsonify({"data": statistics_service.top_products(_limit(10), start=start, end=end)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@statistics_bp.get("/debt-report")
@require_auth
def debt_report_route():
    return jsonify(statistics_service.debt_report()), 200
