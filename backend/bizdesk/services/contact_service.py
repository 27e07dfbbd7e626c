# Overview: Service-layer operations for customers and agents.

"""
Customers and agents share the same shape of bookkeeping: total_orders and
total_amount are denormalized sums over their ACTIVE orders. The order
service keeps them current; recompute_aggregates() rebuilds them from the
orders table when they drift (imports, manual DB edits).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Agent, Order
from ..validation import ConflictError, NotFoundError
from .pagination import paginate, like_pattern

CUSTOMER_MUTABLE_FIELDS = {"name", "phone", "address", "tax_code", "email", "agent_id", "is_active", "notes"}
AGENT_MUTABLE_FIELDS = {"name", "phone", "address", "email", "commission_rate", "is_active", "notes"}


def _apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for key, value in patch.items():
        if key in allowed:
            setattr(obj, key, value)


def _referenced_by_orders(column, ref_id: int) -> int:
    return db.session.query(func.count(Order.id)).filter(column == ref_id).scalar() or 0


# -- customers -------------------------------------------------------------

def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def _require_agent(agent_id: int | None) -> None:
    if agent_id is not None and db.session.get(Agent, agent_id) is None:
        raise NotFoundError("Agent not found")


def list_customers(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    agent_id: int | None = None,
    is_active: bool | None = None,
) -> dict:
    query = db.session.query(Customer).outerjoin(Agent, Customer.agent_id == Agent.id)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Customer.name.ilike(pattern, escape="\\"),
            Customer.phone.ilike(pattern, escape="\\"),
            Customer.email.ilike(pattern, escape="\\"),
            Customer.tax_code.ilike(pattern, escape="\\"),
            Agent.name.ilike(pattern, escape="\\"),
        ))
    if agent_id:
        query = query.filter(Customer.agent_id == agent_id)
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))

    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page=page, limit=limit)


def create_customer(*, patch: dict) -> dict:
    _require_agent(patch.get("agent_id"))

    customer = Customer(total_orders=0, total_amount=0)
    _apply_patch(customer, patch, CUSTOMER_MUTABLE_FIELDS)

    db.session.add(customer)
    db.session.commit()
    return customer.to_dict()


def update_customer(*, customer_id: int, patch: dict) -> dict:
    customer = get_customer(customer_id)
    if "agent_id" in patch:
        _require_agent(patch["agent_id"])

    _apply_patch(customer, patch, CUSTOMER_MUTABLE_FIELDS)
    db.session.commit()
    return customer.to_dict()


def delete_customer(*, customer_id: int) -> None:
    customer = get_customer(customer_id)

    count = _referenced_by_orders(Order.customer_id, customer.id)
    if count:
        raise ConflictError(f"Cannot delete customer: referenced by {count} order(s); deactivate instead")

    db.session.delete(customer)
    db.session.commit()


def customers_for_agent(agent_id: int) -> list[dict]:
    get_agent(agent_id)
    rows = db.session.query(Customer).filter_by(agent_id=agent_id).order_by(Customer.name.asc()).all()
    return [c.to_dict() for c in rows]


# -- agents ----------------------------------------------------------------

def get_agent(agent_id: int) -> Agent:
    agent = db.session.get(Agent, agent_id)
    if agent is None:
        raise NotFoundError("Agent not found")
    return agent


def list_agents(*, page: int = 1, limit: int = 10, search: str | None = None, is_active: bool | None = None) -> dict:
    query = db.session.query(Agent)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Agent.name.ilike(pattern, escape="\\"),
            Agent.phone.ilike(pattern, escape="\\"),
            Agent.email.ilike(pattern, escape="\\"),
        ))
    if is_active is not None:
        query = query.filter(Agent.is_active.is_(is_active))

    query = query.order_by(Agent.name.asc(), Agent.id.asc())
    return paginate(query, page=page, limit=limit)


def create_agent(*, patch: dict) -> dict:
    agent = Agent(total_orders=0, total_amount=0)
    _apply_patch(agent, patch, AGENT_MUTABLE_FIELDS)

    db.session.add(agent)
    db.session.commit()
    return agent.to_dict()


def update_agent(*, agent_id: int, patch: dict) -> dict:
    agent = get_agent(agent_id)
    _apply_patch(agent, patch, AGENT_MUTABLE_FIELDS)
    db.session.commit()
    return agent.to_dict()


def delete_agent(*, agent_id: int) -> None:
    agent = get_agent(agent_id)

    count = _referenced_by_orders(Order.agent_id, agent.id)
    if count:
        raise ConflictError(f"Cannot delete agent: referenced by {count} order(s); deactivate instead")

    customers = db.session.query(func.count(Customer.id)).filter(Customer.agent_id == agent.id).scalar() or 0
    if customers:
        raise ConflictError(f"Cannot delete agent: {customers} customer(s) are assigned to it")

    db.session.delete(agent)
    db.session.commit()


# -- aggregates ------------------------------------------------------------

def _sums_by(column) -> dict[int, tuple[int, int]]:
    rows = (
        db.session.query(column, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.status == "active", column.isnot(None))
        .group_by(column)
        .all()
    )
    return {ref_id: (int(count), int(amount)) for ref_id, count, amount in rows}


def recompute_aggregates() -> dict:
    """
    Rebuild total_orders / total_amount of every customer and agent from
    active orders. Returns how many records were corrected.
    """
    fixed = {"customers": 0, "agents": 0}

    for model, column, key in ((Customer, Order.customer_id, "customers"), (Agent, Order.agent_id, "agents")):
        sums = _sums_by(column)
        for record in db.session.query(model).all():
            count, amount = sums.get(record.id, (0, 0))
            if record.total_orders != count or record.total_amount != amount:
                current_app.logger.info(
                    "Correcting %s %s aggregates: orders %s -> %s, amount %s -> %s",
                    model.__name__, record.id, record.total_orders, count, record.total_amount, amount,
                )
                record.total_orders = count
                record.total_amount = amount
                fixed[key] += 1

    db.session.commit()
    return fixed
