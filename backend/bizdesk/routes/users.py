# Overview: Flask API routes for user accounts; parses input and returns JSON responses.

# backend/bizdesk/routes/users.py
"""
User management routes.

SECURITY: listing, creating and deleting users is admin-only. Any
authenticated user may read and update their own profile; the service
layer rejects role/is_active changes from non-admins.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import User
from ..services import user_service
from ..services.auth_service import AuthorizationError, PasswordValidationError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_user,
    parse_pagination,
    parse_bool_arg,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, require_admin

USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "email", "full_name", "phone", "role", "is_active"},
    required_on_create={"username", "full_name"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _split_password(payload: dict) -> tuple[dict, str | None]:
    payload = dict(payload)
    password = payload.pop("password", None)
    return payload, password


@users_bp.get("")
@require_auth
@require_admin
def list_users_route():
    """Query params: page, limit, search, role, is_active."""
    try:
        page, limit = parse_pagination(request.args)
        result = user_service.list_users(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            role=request.args.get("role"),
            is_active=parse_bool_arg(request.args, "is_active"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    if not g.current_user.is_admin and g.current_user.id != user_id:
        return jsonify({"error": "Permission denied"}), 403
    try:
        return jsonify({"user": user_service.get_user(user_id).to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@users_bp.post("")
@require_auth
@require_admin
def create_user_route():
    payload, password = _split_password(request.get_json(silent=True) or {})
    if not password:
        return jsonify({"error": "password is required"}), 400

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
        enforce_rules_user(patch)
        user = user_service.create_user(patch=patch, password=password, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 201
    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except AuthorizationError as e:
        return jsonify({"error": str(e)}), 403
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    payload, password = _split_password(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
        enforce_rules_user(patch)
        user = user_service.update_user(user_id=user_id, patch=patch, actor=g.current_user, password=password)
        return jsonify({"user": user.to_dict()}), 200
    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except AuthorizationError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_admin
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(user_id=user_id, actor=g.current_user)
        return jsonify({"ok": True}), 200
    except AuthorizationError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
