# Overview: Flask API routes for product categories; parses input and returns JSON responses.

# backend/bizdesk/routes/categories.py
from flask import Blueprint, request, jsonify

from ..models import Category
from ..services import category_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    parse_pagination,
    parse_bool_arg,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    try:
        page, limit = parse_pagination(request.args)
        result = category_service.list_categories(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            is_active=parse_bool_arg(request.args, "is_active"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return jsonify(result), 200


@categories_bp.get("/active")
@require_auth
def active_categories_route():
    return jsonify({"data": category_service.active_categories()}), 200


@categories_bp.get("/<int:category_id>")
@require_auth
def get_category_route(category_id: int):
    try:
        return category_service.category_detail(category_id), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@categories_bp.post("")
@require_auth
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        return category_service.create_category(patch=patch), 201
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409


@categories_bp.put("/<int:category_id>")
@require_auth
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        return category_service.update_category(category_id=category_id, patch=patch), 200
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409


@categories_bp.delete("/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        category_service.delete_category(category_id=category_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"ok": True}, 200
