from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Agent(db.Model):
    """
    Sales agent (reseller) that customers and orders can be attributed to.

    total_orders / total_amount are denormalized over the agent's active
    orders; the order service keeps them current and
    contact_service.recompute_aggregates() rebuilds them from scratch.
    """
    __tablename__ = "agents"
    __table_args__ = (
        db.Index("ix_agents_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # Percent, e.g. 5 for 5%
    commission_rate = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    # Denormalized aggregates (active orders only)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "email": self.email,
            "commission_rate": self.commission_rate,
            "is_active": self.is_active,
            "notes": self.notes,
            "total_orders": self.total_orders,
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(db.Model):
    """
    Customer master data, optionally managed by an agent.

    Same denormalized aggregates as Agent.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_agent_active", "agent_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    tax_code = db.Column(db.String(13), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    agent = db.relationship("Agent", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "tax_code": self.tax_code,
            "email": self.email,
            "agent_id": self.agent_id,
            "agent_name": self.agent.name if self.agent else None,
            "is_active": self.is_active,
            "notes": self.notes,
            "total_orders": self.total_orders,
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
