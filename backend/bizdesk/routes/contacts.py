# Overview: Flask API routes for customers and agents; parses input and returns JSON responses.

# backend/bizdesk/routes/contacts.py
from flask import Blueprint, request, jsonify

from ..models import Customer, Agent
from ..services import contact_service, order_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    enforce_rules_agent,
    parse_pagination,
    parse_bool_arg,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "address", "tax_code", "email", "agent_id", "is_active", "notes"},
    required_on_create={"name"},
)

AGENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "address", "email", "commission_rate", "is_active", "notes"},
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")
agents_bp = Blueprint("agents", __name__, url_prefix="/api/agents")


# -- customers -------------------------------------------------------------

@customers_bp.get("")
@require_auth
def list_customers_route():
    """Query params: page, limit, search (name/phone/email/tax code/agent), agent_id, is_active."""
    try:
        page, limit = parse_pagination(request.args)
        result = contact_service.list_customers(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            agent_id=request.args.get("agent_id", type=int),
            is_active=parse_bool_arg(request.args, "is_active"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return jsonify(result), 200


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return contact_service.get_customer(customer_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.get("/<int:customer_id>/orders")
@require_auth
def customer_orders_route(customer_id: int):
    try:
        orders = order_service.orders_for_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return jsonify({"data": [o.to_dict(include_items=False) for o in orders]}), 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        return contact_service.create_customer(patch=patch), 201
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        return contact_service.update_customer(customer_id=customer_id, patch=patch), 200
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    try:
        contact_service.delete_customer(customer_id=customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"ok": True}, 200


# -- agents ----------------------------------------------------------------

@agents_bp.get("")
@require_auth
def list_agents_route():
    try:
        page, limit = parse_pagination(request.args)
        result = contact_service.list_agents(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            is_active=parse_bool_arg(request.args, "is_active"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return jsonify(result), 200


@agents_bp.get("/<int:agent_id>")
@require_auth
def get_agent_route(agent_id: int):
    try:
        return contact_service.get_agent(agent_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@agents_bp.get("/<int:agent_id>/customers")
@require_auth
def agent_customers_route(agent_id: int):
    try:
        return jsonify({"data": contact_service.customers_for_agent(agent_id)}), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@agents_bp.get("/<int:agent_id>/orders")
@require_auth
def agent_orders_route(agent_id: int):
    try:
        orders = order_service.orders_for_agent(agent_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return jsonify({"data": [o.to_dict(include_items=False) for o in orders]}), 200


@agents_bp.post("")
@require_auth
def create_agent_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Agent, payload=payload, policy=AGENT_POLICY, partial=False)
        enforce_rules_agent(patch)
        return contact_service.create_agent(patch=patch), 201
    except ValidationError as e:
        return {"error": str(e)}, 400


@agents_bp.put("/<int:agent_id>")
@require_auth
def update_agent_route(agent_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Agent, payload=payload, policy=AGENT_POLICY, partial=True)
        enforce_rules_agent(patch)
        return contact_service.update_agent(agent_id=agent_id, patch=patch), 200
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404


@agents_bp.delete("/<int:agent_id>")
@require_auth
def delete_agent_route(agent_id: int):
    try:
        contact_service.delete_agent(agent_id=agent_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"ok": True}, 200
